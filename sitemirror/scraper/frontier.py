"""Thread-safe work queue with depth, filter, and host policy enforcement."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from .scope import CrawlScope
from .types import RESOURCE_TAGS, SourceTag, WorkItem
from .url import is_http_url, strip_fragment, url_key

if TYPE_CHECKING:
    from .stats import StatsCollector


class EnqueueStatus(str, Enum):
    """Result status for frontier enqueue attempts."""

    ENQUEUED = "enqueued"
    SKIPPED_INVALID_URL = "skipped_invalid_url"
    SKIPPED_DEPTH = "skipped_depth"
    SKIPPED_FILTERED = "skipped_filtered"
    SKIPPED_EXTERNAL = "skipped_external"
    SKIPPED_SEEN = "skipped_seen"
    SKIPPED_CLOSED = "skipped_closed"


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    """Outcome of one enqueue attempt."""

    status: EnqueueStatus
    key: str | None = None
    item: WorkItem | None = None

    @property
    def accepted(self) -> bool:
        return self.status == EnqueueStatus.ENQUEUED


class ProcessedSet:
    """URL keys that have been handed to the download pipeline.

    Keys are only ever added. `check_and_mark` is the single point where a
    worker claims a URL, so two workers never download the same key.
    """

    def __init__(self, initial: Iterable[str] | None = None) -> None:
        self._lock = threading.Lock()
        self._keys: set[str] = set(initial or ())

    def check_and_mark(self, key: str) -> bool:
        """Mark `key` processed; return False when it already was."""

        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def mark(self, key: str) -> None:
        with self._lock:
            self._keys.add(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def snapshot(self) -> set[str]:
        with self._lock:
            return set(self._keys)


class Frontier:
    """Work queue shared by the scheduler's worker threads.

    - Depth, include/exclude filters, and the host policy are applied on push.
    - Already-processed keys are rejected early; the authoritative duplicate
      check happens at dequeue time through `ProcessedSet.check_and_mark`.
    - A pending counter tracks queued plus in-flight items, so the crawl is
      drained exactly when it drops to zero.
    """

    def __init__(
        self,
        scope: CrawlScope,
        processed: ProcessedSet,
        *,
        max_depth: int = 0,
        stats: "StatsCollector | None" = None,
    ) -> None:
        self.scope = scope
        self.processed = processed
        self.max_depth = max_depth
        self.stats = stats

        self._queue: queue.Queue[WorkItem] = queue.Queue()
        self._lock = threading.Lock()
        self._drained = threading.Condition(self._lock)
        self._pending = 0
        self._closed = False

        self._enqueued_count = 0
        self._dequeued_count = 0
        self._requeued_count = 0

    def seed(self, url: str) -> EnqueueResult:
        """Enqueue the start URL at depth 0; filters do not apply to it."""

        if not is_http_url(url):
            return self._record(EnqueueResult(EnqueueStatus.SKIPPED_INVALID_URL))
        url = strip_fragment(url.strip())
        return self._record(self._put(WorkItem(url=url, depth=0), url_key(url)))

    def push(
        self,
        url: str,
        *,
        depth: int,
        tag: SourceTag = SourceTag.ANCHOR,
        referrer: str | None = None,
    ) -> EnqueueResult:
        """Attempt to enqueue one discovered reference with constraints enforced."""

        return self._record(self._admit(url, depth=depth, tag=tag, referrer=referrer))

    def push_many(
        self,
        references: Iterable[tuple[str, SourceTag]],
        *,
        depth: int,
        referrer: str | None = None,
    ) -> list[EnqueueResult]:
        """Attempt to enqueue multiple references, preserving input order."""

        return [
            self.push(url, depth=depth, tag=tag, referrer=referrer)
            for url, tag in references
        ]

    def requeue(self, item: WorkItem) -> EnqueueResult:
        """Put an item back for a later attempt, bypassing the processed check."""

        again = replace(item, requeues=item.requeues + 1)
        result = self._put(again, url_key(item.url))
        if result.accepted:
            with self._lock:
                self._requeued_count += 1
            if self.stats is not None:
                self.stats.record_requeue()
        return result

    def pop(self, *, timeout: float | None = None) -> WorkItem | None:
        """Pop one item for a worker thread, or None when none arrived in time."""

        try:
            item = self._queue.get(block=True, timeout=timeout)
        except queue.Empty:
            return None

        with self._lock:
            self._dequeued_count += 1
        return item

    def task_done(self) -> None:
        """Mark one popped item as finished, including anything it re-queued."""

        self._queue.task_done()
        with self._drained:
            self._pending -= 1
            if self._pending <= 0:
                self._drained.notify_all()

    def wait_drained(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued or in flight; False on timeout."""

        with self._drained:
            return self._drained.wait_for(lambda: self._pending <= 0, timeout=timeout)

    def close(self) -> None:
        """Close frontier to future enqueue attempts."""

        with self._lock:
            self._closed = True

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def snapshot(self) -> dict[str, int | bool]:
        """Return frontier counters for logs/stats reporting."""

        with self._lock:
            return {
                "closed": self._closed,
                "queue_size": self._queue.qsize(),
                "pending": self._pending,
                "enqueued": self._enqueued_count,
                "dequeued": self._dequeued_count,
                "requeued": self._requeued_count,
            }

    def _admit(
        self,
        url: str,
        *,
        depth: int,
        tag: SourceTag,
        referrer: str | None,
    ) -> EnqueueResult:
        try:
            if not is_http_url(url):
                return EnqueueResult(EnqueueStatus.SKIPPED_INVALID_URL)
            key = url_key(url)
            same_host = self.scope.is_same_host(url)
            allowed = self.scope.matches_filters(url)
        except ValueError:
            return EnqueueResult(EnqueueStatus.SKIPPED_INVALID_URL)

        if self.max_depth and depth > self.max_depth:
            return EnqueueResult(EnqueueStatus.SKIPPED_DEPTH, key=key)
        if not allowed:
            return EnqueueResult(EnqueueStatus.SKIPPED_FILTERED, key=key)
        if not same_host and tag not in RESOURCE_TAGS:
            return EnqueueResult(EnqueueStatus.SKIPPED_EXTERNAL, key=key)
        if key in self.processed:
            return EnqueueResult(EnqueueStatus.SKIPPED_SEEN, key=key)

        item = WorkItem(url=url, depth=depth, follow=same_host, referrer=referrer)
        return self._put(item, key)

    def _put(self, item: WorkItem, key: str) -> EnqueueResult:
        with self._lock:
            if self._closed:
                return EnqueueResult(EnqueueStatus.SKIPPED_CLOSED, key=key)
            self._pending += 1
            self._enqueued_count += 1
            self._queue.put(item)
        return EnqueueResult(EnqueueStatus.ENQUEUED, key=key, item=item)

    def _record(self, result: EnqueueResult) -> EnqueueResult:
        if self.stats is not None:
            self.stats.record_enqueue(result)
        return result


__all__ = [
    "EnqueueResult",
    "EnqueueStatus",
    "Frontier",
    "ProcessedSet",
]
