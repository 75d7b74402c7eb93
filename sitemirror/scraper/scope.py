"""Which URLs belong to a mirror."""

from __future__ import annotations

import logging
import re
import threading
from typing import Iterable
from urllib.parse import urlsplit

from .mapping import PathMapper
from .types import RESOURCE_TAGS, SourceTag
from .url import host_from_url


LOGGER = logging.getLogger(__name__)


def _compile_patterns(patterns: Iterable[str], kind: str) -> tuple[re.Pattern[str], ...]:
    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            raise ValueError(f"Invalid {kind} pattern {pattern!r}: {exc}") from exc
    return tuple(compiled)


class CrawlScope:
    """Start host, include/exclude filters, and host policy of a crawl.

    Filters are regular expressions searched in `host + path` of a URL. A URL
    must match at least one include pattern (when any are configured) and no
    exclude pattern. Same-host URLs are followed; off-host URLs are only
    mirrored when they are resources a page needs for rendering.
    """

    def __init__(
        self,
        base_url: str,
        includes: Iterable[str] = (),
        excludes: Iterable[str] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._base_url = base_url
        self._host = host_from_url(base_url)
        if not self._host:
            raise ValueError(f"Start URL has no host: {base_url!r}")

        self.includes = _compile_patterns(includes, "include")
        self.excludes = _compile_patterns(excludes, "exclude")

    @property
    def base_url(self) -> str:
        with self._lock:
            return self._base_url

    @property
    def host(self) -> str:
        with self._lock:
            return self._host

    @property
    def mapper(self) -> PathMapper:
        return PathMapper(self.host)

    def rebase(self, url: str) -> None:
        """Make `url` (the seed's effective URL after redirects) the crawl base."""

        host = host_from_url(url)
        if not host:
            raise ValueError(f"Cannot rebase crawl onto {url!r}")
        with self._lock:
            previous = self._host
            self._base_url = url
            self._host = host
        if previous != host:
            LOGGER.info("Start URL redirected, crawl host is now %s (was %s)", host, previous)

    def rebased(self, url: str) -> "CrawlScope":
        """Return a copy of this scope based on `url`, leaving this one untouched."""

        clone = CrawlScope.__new__(CrawlScope)
        clone._lock = threading.Lock()
        clone._base_url = url
        clone._host = host_from_url(url) or self.host
        clone.includes = self.includes
        clone.excludes = self.excludes
        return clone

    def is_same_host(self, url: str) -> bool:
        return host_from_url(url) == self.host

    def matches_filters(self, url: str) -> bool:
        parsed = urlsplit(url)
        subject = host_from_url(url) + parsed.path

        if self.includes and not any(p.search(subject) for p in self.includes):
            return False
        if any(p.search(subject) for p in self.excludes):
            return False
        return True

    def is_mirrored(self, url: str, tag: SourceTag) -> bool:
        """Return True when a reference of kind `tag` to `url` gets downloaded."""

        try:
            if not self.matches_filters(url):
                return False
            return self.is_same_host(url) or tag in RESOURCE_TAGS
        except ValueError:
            return False


__all__ = ["CrawlScope"]
