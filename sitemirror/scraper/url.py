"""URL keys, resolution, and host helpers."""

from __future__ import annotations

from typing import Sequence
from urllib.parse import urljoin, urlsplit, urlunsplit


DEFAULT_ALLOWED_SCHEMES = ("http", "https")
SKIP_HREF_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")


def _has_default_port(scheme: str, port: int | None) -> bool:
    if port is None:
        return False
    return (scheme == "http" and port == 80) or (scheme == "https" and port == 443)


def host_from_url(url: str) -> str:
    """Return the lower-cased host of a URL, with its port when non-default.

    Credentials are dropped. Invalid ports raise `ValueError`.
    """

    parsed = urlsplit(url)
    host = (parsed.hostname or "").strip().lower()
    if not host:
        return ""

    port = parsed.port
    if port is not None and not _has_default_port(parsed.scheme.lower(), port):
        return f"{host}:{port}"
    return host


def is_http_url(url: str, allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES) -> bool:
    """Return True if URL is absolute and has an allowed HTTP-like scheme."""

    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    if not parsed.scheme or not parsed.netloc:
        return False
    return parsed.scheme.lower() in {scheme.lower() for scheme in allowed_schemes}


def strip_fragment(url: str) -> str:
    """Drop the `#fragment` part of a URL, leaving everything else untouched."""

    parsed = urlsplit(url)
    if not parsed.fragment and "#" not in url:
        return url
    return urlunsplit((parsed.scheme, parsed.netloc, parsed.path, parsed.query, ""))


def fragment_of(url: str) -> str:
    return urlsplit(url).fragment


def url_key(url: str) -> str:
    """Canonical processed-set key: scheme, host, path, and query; no fragment.

    Scheme and host are lower-cased, default ports dropped, and an empty path
    becomes `/`, so `https://Example.org` and `https://example.org/#top` share
    one key.
    """

    parsed = urlsplit(url.strip())
    scheme = parsed.scheme.lower()
    path = parsed.path or "/"
    return urlunsplit((scheme, host_from_url(url.strip()), path, parsed.query, ""))


def url_path(url: str) -> str:
    return urlsplit(url).path


def resolve_url(
    base_url: str,
    href: str | None,
    *,
    allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES,
) -> str | None:
    """Resolve a possibly relative attribute value against `base_url`.

    Returns `None` for values that never name a fetchable resource (empty,
    fragment-only, `mailto:` and friends, non-HTTP schemes). Raises
    `ValueError` for values `urllib` cannot parse, so callers can report them.
    """

    if href is None:
        return None

    candidate = href.strip()
    if not candidate or candidate.startswith("#"):
        return None

    lowered = candidate.lower()
    if any(lowered.startswith(prefix) for prefix in SKIP_HREF_PREFIXES):
        return None

    absolute = urljoin(base_url, candidate)
    parsed = urlsplit(absolute)
    if not parsed.scheme or not parsed.netloc:
        return None
    if parsed.scheme.lower() not in {scheme.lower() for scheme in allowed_schemes}:
        return None
    # Touch the port so malformed values surface here instead of later.
    _ = parsed.port
    return absolute


__all__ = [
    "DEFAULT_ALLOWED_SCHEMES",
    "SKIP_HREF_PREFIXES",
    "fragment_of",
    "host_from_url",
    "is_http_url",
    "resolve_url",
    "strip_fragment",
    "url_key",
    "url_path",
]
