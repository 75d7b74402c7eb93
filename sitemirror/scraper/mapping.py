"""Deterministic mapping from fetched URLs to paths inside the mirror."""

from __future__ import annotations

import posixpath
from urllib.parse import quote, unquote, urlsplit

from .constants import EXTERNAL_DOMAIN_PREFIX, PAGE_DIR_INDEX, PAGE_EXTENSION
from .url import host_from_url


def page_file_path(path: str) -> str:
    """Return the file name a page URL path is stored under.

    The root and directory paths get the directory index, extensionless paths
    get the page extension, and anything with an extension is kept as is.
    """

    if path in {"", "/"}:
        return PAGE_DIR_INDEX
    if path.endswith("/"):
        return path + PAGE_DIR_INDEX

    _, ext = posixpath.splitext(posixpath.basename(path))
    if not ext:
        return path + PAGE_EXTENSION
    return path


def _clean_segments(path: str) -> list[str]:
    # Dot segments would let a URL escape its host directory.
    return [segment for segment in path.split("/") if segment not in {"", ".", ".."}]


class PathMapper:
    """Map URLs onto `host/[_foreignhost/]path` locations relative to the output root.

    The mapping is pure: it only depends on the start host given at construction
    and on the URL, never on what has been mapped before.
    """

    def __init__(self, start_host: str) -> None:
        if not start_host:
            raise ValueError("PathMapper requires a start host")
        self.start_host = start_host.lower()

    def map(self, url: str, is_page: bool) -> str:
        parsed = urlsplit(url)
        path = unquote(parsed.path)

        if is_page or path in {"", "/"} or path.endswith("/"):
            # A directory cannot hold file content, so asset URLs naming one
            # share the page naming rule.
            file_name = page_file_path(path)
        else:
            file_name = path

        segments = [self.start_host]
        host = host_from_url(url)
        if host and host != self.start_host:
            segments.append(EXTERNAL_DOMAIN_PREFIX + host)
        segments.extend(_clean_segments(file_name))
        return posixpath.join(*segments)

    def unmap(self, path: str, scheme: str = "https") -> str | None:
        """Best-effort inverse of `map` for a mirror path.

        Directory indexes turn back into directory URLs and `_host` segments
        into foreign hosts. A page extension added by `map` cannot be told
        apart from a real one, so it is kept.
        """

        segments = [segment for segment in path.split("/") if segment]
        if not segments or segments[0] != self.start_host:
            return None
        segments = segments[1:]

        host = self.start_host
        # Site paths may start with "_" too; host names always carry a dot.
        if (
            len(segments) > 1
            and segments[0].startswith(EXTERNAL_DOMAIN_PREFIX)
            and "." in segments[0]
        ):
            host = segments[0][len(EXTERNAL_DOMAIN_PREFIX):]
            segments = segments[1:]

        url_path = "/" + "/".join(segments)
        if segments and segments[-1] == PAGE_DIR_INDEX:
            url_path = url_path[: -len(PAGE_DIR_INDEX)]
        return f"{scheme}://{host}{quote(url_path)}"

    def is_page_path(self, url: str) -> bool:
        """Return True when a URL path looks like a page rather than an asset.

        Used when a response carries no usable Content-Type (304 answers).
        """

        path = urlsplit(url).path
        if path in {"", "/"} or path.endswith("/"):
            return True
        _, ext = posixpath.splitext(posixpath.basename(path))
        return ext.lower() in {"", ".html", ".htm", ".xhtml"}


def relative_link(from_path: str, to_path: str) -> str:
    """Return the link that leads from one mapped file to another."""

    start = posixpath.dirname(from_path) or "."
    return posixpath.relpath(to_path, start)


__all__ = [
    "PathMapper",
    "page_file_path",
    "relative_link",
]
