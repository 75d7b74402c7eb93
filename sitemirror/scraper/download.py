"""Download pipeline: fetch one work item, store it, and report its references."""

from __future__ import annotations

import logging
import posixpath
import threading
from datetime import datetime
from typing import Iterable, Iterator
from urllib.parse import urlsplit

import requests

from .config import CrawlConfig
from .errors import TransportError
from .fetcher import FetchOutcome, FetchResponse, Fetcher
from .images import ImageRecoder
from .mapping import PathMapper
from .references import (
    find_references,
    iter_css_values,
    iter_tag_values,
    parse_document,
)
from .rewrite import MirrorPredicate, rewrite_css, rewrite_document
from .scope import CrawlScope
from .stats import StatsCollector
from .storage import Storage
from .types import HTML_REFERENCE_TAGS, ContentKind, Reference, SourceTag, WorkItem, WorkResult
from .url import host_from_url, resolve_url, strip_fragment, url_path


LOGGER = logging.getLogger(__name__)


def _never_mirrored(url: str, tag: SourceTag) -> bool:
    return False


class Downloader:
    """Turn a `WorkItem` into stored files and a list of discovered references.

    `process_url` returns `(effective_url, result)`. `effective_url` is set for
    pages and not-modified answers; `result` is None when the item produced
    nothing to schedule (client errors, dropped items).
    """

    def __init__(
        self,
        config: CrawlConfig,
        scope: CrawlScope,
        storage: Storage,
        fetcher: Fetcher,
        stats: StatsCollector | None = None,
        recoder: ImageRecoder | None = None,
    ) -> None:
        self.config = config
        self.scope = scope
        self.storage = storage
        self.fetcher = fetcher
        self.stats = stats
        self.recoder = recoder or ImageRecoder()

    def process_url(
        self,
        item: WorkItem,
        cancel: threading.Event | None = None,
    ) -> tuple[str | None, WorkResult | None]:
        mapper = self.scope.mapper
        page_path = mapper.map(item.url, True)
        asset_path = mapper.map(item.url, False)

        since: datetime | None = None
        for candidate in (page_path, asset_path):
            if self.storage.exists(candidate):
                since = self.storage.mod_time(candidate)
                break

        response = self.fetcher.get(item.url, if_modified_since=since, cancel=cancel)
        try:
            self._log_fetch(item, response)
            return self._dispatch(item, response, cancel)
        finally:
            response.close()

    def _dispatch(
        self,
        item: WorkItem,
        response: FetchResponse,
        cancel: threading.Event | None,
    ) -> tuple[str | None, WorkResult | None]:
        outcome = response.outcome

        if outcome == FetchOutcome.RATE_LIMITED:
            return None, WorkResult(item=item, status_code=response.status_code, requeue=True)

        if outcome == FetchOutcome.NO_CONTENT:
            if item.requeues < self.config.tries:
                return None, WorkResult(item=item, status_code=response.status_code, requeue=True)
            LOGGER.warning(
                "Dropping %s after %d empty (204) responses", item.url, item.requeues + 1
            )
            if self.stats is not None:
                self.stats.record_dropped()
            return None, None

        if outcome == FetchOutcome.CLIENT_ERROR:
            return None, None

        effective_url = response.effective_url if item.depth == 0 else item.url
        scope = self.scope
        if item.depth == 0 and host_from_url(effective_url) != scope.host:
            # The scheduler rebases the shared scope once this returns.
            scope = scope.rebased(effective_url)

        if outcome == FetchOutcome.NOT_MODIFIED:
            return effective_url, self._not_modified(item, response, scope, effective_url)

        kind = response.content_kind
        if kind == ContentKind.HTML:
            return effective_url, self._store_html(item, response, scope, effective_url, cancel)
        if kind == ContentKind.CSS:
            return None, self._store_css(item, response, scope, effective_url, cancel)
        if kind == ContentKind.IMAGE and self.config.image_quality != 0:
            return None, self._store_image(item, response, scope, effective_url, cancel)
        return None, self._store_stream(item, response, scope, effective_url, cancel)

    def _not_modified(
        self,
        item: WorkItem,
        response: FetchResponse,
        scope: CrawlScope,
        url: str,
    ) -> WorkResult:
        mapper = scope.mapper
        result = WorkResult(item=item, status_code=response.status_code)

        if mapper.is_page_path(url):
            path = mapper.map(url, True)
            is_css = False
        elif url_path(url).lower().endswith(".css"):
            path = mapper.map(url, False)
            is_css = True
        else:
            return result

        if not self.storage.exists(path):
            LOGGER.warning("Got 304 for %s but local file %s is missing", url, path)
            return result

        data = self.storage.read(path)
        if is_css:
            values = self._css_values(data)
        else:
            values = self._document_values(parse_document(data))

        # Stored links point into the mirror; follow them back to their origins.
        for tag, value in values:
            origin = self._origin_of(value, local_path=path, page_url=url, mapper=mapper)
            if origin is not None:
                result.references.append(Reference(url=origin, tag=tag))

        if self.stats is not None:
            self.stats.record_rescan()
        LOGGER.debug("Rescanned %s: %d reference(s)", path, len(result.references))
        return result

    @staticmethod
    def _document_values(doc) -> Iterator[tuple[SourceTag, str]]:
        for tag in HTML_REFERENCE_TAGS:
            for _, _, value in iter_tag_values(doc, tag):
                yield tag, value

    @staticmethod
    def _css_values(data: bytes) -> Iterator[tuple[SourceTag, str]]:
        text = data.decode("utf-8", errors="surrogateescape")
        for value in iter_css_values(text):
            yield SourceTag.CSS, value

    def _origin_of(
        self,
        value: str,
        *,
        local_path: str,
        page_url: str,
        mapper: PathMapper,
    ) -> str | None:
        """Return the origin URL behind one link of a stored file.

        Absolute links were left unmirrored and resolve as they are. Relative
        links name another mirror file; the URL index knows where it came from,
        and the inverse path mapping covers files it has no record of.
        """

        value = value.strip()
        try:
            if urlsplit(value).scheme or value.startswith("/"):
                resolved = resolve_url(page_url, value)
                return strip_fragment(resolved) if resolved else None

            target = strip_fragment(value)
            if not target:
                return None
            local = posixpath.normpath(posixpath.join(posixpath.dirname(local_path), target))
        except ValueError as exc:
            LOGGER.warning("Skipping malformed link %r in %s: %s", value, local_path, exc)
            return None

        return self.storage.origin_url(local) or mapper.unmap(
            local, scheme=urlsplit(page_url).scheme or "https"
        )

    def _record_origins(
        self,
        path: str,
        url: str,
        references: list[Reference],
        mapper: PathMapper,
        is_mirrored: MirrorPredicate,
    ) -> None:
        """Index the stored file and every mirror file it now links to."""

        origins = {path: strip_fragment(url)}
        for ref in references:
            if is_mirrored(ref.url, ref.tag):
                origins[mapper.map(ref.url, ref.tag == SourceTag.ANCHOR)] = strip_fragment(ref.url)
        try:
            self.storage.record_origins(origins)
        except OSError as exc:
            LOGGER.error("Updating the URL index for %s failed: %s", path, exc)
            if self.stats is not None:
                self.stats.record_storage_failure()

    def _store_html(
        self,
        item: WorkItem,
        response: FetchResponse,
        scope: CrawlScope,
        url: str,
        cancel: threading.Event | None,
    ) -> WorkResult:
        mapper = scope.mapper
        page_path = mapper.map(url, True)

        data = self._read_body(response)
        doc = parse_document(data)
        references = find_references(doc, response.effective_url)
        is_mirrored = self._mirror_predicate(item, scope)

        rewritten, changed = rewrite_document(
            doc,
            base_url=response.effective_url,
            page_path=page_path,
            mapper=mapper,
            is_mirrored=is_mirrored,
        )

        with self.storage.guard(page_path):
            self._write(
                page_path,
                rewritten if changed and rewritten is not None else data,
                last_modified=response.last_modified,
                cancel=cancel,
            )
        self._record_origins(page_path, url, references, mapper, is_mirrored)
        return WorkResult(item=item, status_code=response.status_code, references=references)

    def _store_css(
        self,
        item: WorkItem,
        response: FetchResponse,
        scope: CrawlScope,
        url: str,
        cancel: threading.Event | None,
    ) -> WorkResult:
        mapper = scope.mapper
        css_path = mapper.map(url, False)

        data = self._read_body(response)
        is_mirrored = self._mirror_predicate(item, scope)
        rewritten, references = rewrite_css(
            data,
            base_url=response.effective_url,
            css_path=css_path,
            mapper=mapper,
            is_mirrored=is_mirrored,
        )
        self._store_asset(css_path, rewritten, response.last_modified, cancel)
        self._record_origins(css_path, url, references, mapper, is_mirrored)
        return WorkResult(item=item, status_code=response.status_code, references=references)

    def _store_image(
        self,
        item: WorkItem,
        response: FetchResponse,
        scope: CrawlScope,
        url: str,
        cancel: threading.Event | None,
    ) -> WorkResult:
        path = scope.mapper.map(url, False)

        data = self._read_body(response)
        recoded = self.recoder.recode(data, self.config.image_quality, url=url)
        # Re-encoded bytes are no longer what the server dated.
        last_modified = response.last_modified if recoded is data else None
        self._store_asset(path, recoded, last_modified, cancel)
        return WorkResult(item=item, status_code=response.status_code)

    def _store_stream(
        self,
        item: WorkItem,
        response: FetchResponse,
        scope: CrawlScope,
        url: str,
        cancel: threading.Event | None,
    ) -> WorkResult:
        path = scope.mapper.map(url, False)
        self._store_asset(path, response.iter_content(), response.last_modified, cancel)
        return WorkResult(item=item, status_code=response.status_code)

    def _store_asset(
        self,
        path: str,
        data: bytes | Iterable[bytes],
        last_modified: datetime | None,
        cancel: threading.Event | None,
    ) -> None:
        """Write an asset unless an equally recent copy is already stored."""

        with self.storage.guard(path):
            if self.storage.exists(path):
                local = self.storage.mod_time(path)
                if last_modified is None or (local is not None and last_modified <= local):
                    LOGGER.debug("Keeping existing %s", path)
                    return
            self._write(path, data, last_modified=last_modified, cancel=cancel)

    def _write(
        self,
        path: str,
        data: bytes | Iterable[bytes],
        *,
        last_modified: datetime | None,
        cancel: threading.Event | None,
    ) -> None:
        # requests exceptions derive from IOError, so they are split off first.
        try:
            written = self.storage.write_atomic(path, data, cancel=cancel)
            if last_modified is not None:
                self.storage.set_mod_time(path, last_modified)
        except requests.RequestException as exc:
            raise TransportError(f"reading response body for {path}: {exc}") from exc
        except OSError as exc:
            LOGGER.error("Writing %s failed: %s", path, exc)
            if self.stats is not None:
                self.stats.record_storage_failure()
            return

        LOGGER.debug("Stored %s (%d bytes)", path, written)
        if self.stats is not None:
            self.stats.record_stored(written)

    def _mirror_predicate(self, item: WorkItem, scope: CrawlScope) -> MirrorPredicate:
        if not item.follow:
            return _never_mirrored
        if self.config.max_depth and item.depth + 1 > self.config.max_depth:
            return _never_mirrored
        return scope.is_mirrored

    @staticmethod
    def _read_body(response: FetchResponse) -> bytes:
        try:
            return response.read()
        except requests.RequestException as exc:
            raise TransportError(f"reading response body of {response.url}: {exc}") from exc

    def _log_fetch(self, item: WorkItem, response: FetchResponse) -> None:
        if response.status_code >= 400:
            LOGGER.warning(
                "GET %s status=%s elapsed=%dms referrer=%s",
                response.url,
                response.status_code,
                response.elapsed_ms,
                item.referrer or "-",
            )
        else:
            LOGGER.info(
                "GET %s status=%s elapsed=%dms",
                response.url,
                response.status_code,
                response.elapsed_ms,
            )
        if self.stats is not None:
            self.stats.record_fetch(response.elapsed_ms)


__all__ = ["Downloader"]
