"""Crawl orchestration: seed, worker threads, and termination."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

import requests

from .config import CrawlConfig
from .download import Downloader
from .errors import CrawlCancelled
from .fetcher import Fetcher
from .frontier import EnqueueStatus, Frontier, ProcessedSet
from .images import ImageRecoder
from .scope import CrawlScope
from .stats import StatsCollector
from .storage import Storage
from .throttle import Throttle
from .types import WorkItem
from .url import url_key


LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 0.05
WORKER_JOIN_TIMEOUT_SECONDS = 5.0


class Scheduler:
    """Runs a mirror crawl from one seed URL until the work queue drains.

    Workers claim URLs through the shared `ProcessedSet` at dequeue time, call
    the download pipeline, and push discovered references one level deeper.
    The first fatal error stops every worker and is re-raised from `start`.
    """

    def __init__(
        self,
        config: CrawlConfig,
        downloader: Downloader | None = None,
        *,
        stats: StatsCollector | None = None,
        session_factory: Callable[[], requests.Session] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.config = config
        self.poll_interval = poll_interval
        self.processed = ProcessedSet()

        if downloader is None:
            self.stats = stats or StatsCollector()
            self.scope = CrawlScope(config.url, config.includes, config.excludes)
            throttle = Throttle(
                min_delay=config.throttle_min_seconds,
                max_delay=config.throttle_max_seconds,
                step=config.throttle_step_seconds,
            )
            fetcher_kwargs: dict[str, Any] = {}
            if session_factory is not None:
                fetcher_kwargs["session_factory"] = session_factory
            fetcher = Fetcher(config, throttle, self.stats, **fetcher_kwargs)
            downloader = Downloader(
                config,
                self.scope,
                Storage(config.output_dir),
                fetcher,
                self.stats,
                recoder=ImageRecoder(),
            )
            self._owns_fetcher = True
        else:
            self.stats = stats or downloader.stats or StatsCollector()
            self.scope = downloader.scope
            self._owns_fetcher = False

        self.downloader = downloader

        self._error_lock = threading.Lock()
        self._error: BaseException | None = None

    def start(
        self,
        seed_url: str | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Crawl from `seed_url` (default: the configured URL) and return stats.

        Raises `CrawlCancelled` when `cancel` fires, or the first fatal
        `CrawlError` a worker hit.
        """

        seed = seed_url or self.config.url
        if seed_url:
            self.scope.rebase(seed)

        with self._error_lock:
            self._error = None

        stop = threading.Event()
        frontier = Frontier(
            self.scope,
            self.processed,
            max_depth=self.config.max_depth,
            stats=self.stats,
        )
        seeded = frontier.seed(seed)
        if not seeded.accepted:
            raise ValueError(f"Cannot crawl seed URL {seed!r}: {seeded.status.value}")

        workers = [
            threading.Thread(
                target=self._worker,
                args=(frontier, stop),
                name=f"sitemirror-worker-{idx}",
                daemon=True,
            )
            for idx in range(self.config.concurrency)
        ]

        LOGGER.info(
            "Mirroring %s into %s with %d worker(s)",
            seed,
            self.config.output_dir,
            len(workers),
        )

        for worker in workers:
            worker.start()

        try:
            while not stop.is_set():
                if cancel is not None and cancel.is_set():
                    LOGGER.warning("Cancellation requested, stopping workers")
                    break
                if frontier.wait_drained(timeout=self.poll_interval):
                    break
        finally:
            stop.set()
            frontier.close()
            for worker in workers:
                worker.join(timeout=WORKER_JOIN_TIMEOUT_SECONDS)
            self.stats.record_frontier_snapshot(frontier.snapshot())
            if self._owns_fetcher:
                self.downloader.fetcher.close()
            self.stats.finish()

        if cancel is not None and cancel.is_set():
            raise CrawlCancelled("crawl cancelled")
        with self._error_lock:
            error = self._error
        if error is not None:
            raise error

        LOGGER.info("Crawl finished: %d URL(s) processed", len(self.processed))
        return self.stats.to_json()

    def _worker(self, frontier: Frontier, stop: threading.Event) -> None:
        while not stop.is_set():
            item = frontier.pop(timeout=self.poll_interval)
            if item is None:
                continue

            try:
                self._process(frontier, item, stop)
            except CrawlCancelled:
                LOGGER.debug("Worker stopped while processing %s", item.url)
            except Exception as exc:
                self._fail(exc, item)
                stop.set()
            finally:
                frontier.task_done()

    def _process(self, frontier: Frontier, item: WorkItem, stop: threading.Event) -> None:
        key = url_key(item.url)
        # Re-queued items were claimed on their first pass.
        if item.requeues == 0 and not self.processed.check_and_mark(key):
            self.stats.record_duplicate()
            return

        effective_url, result = self.downloader.process_url(item, cancel=stop)

        if item.depth == 0 and effective_url:
            effective_key = url_key(effective_url)
            if effective_key != key:
                self.scope.rebase(effective_url)
                self.processed.mark(effective_key)

        if result is None:
            return

        if result.requeue:
            if frontier.requeue(item).status == EnqueueStatus.SKIPPED_CLOSED:
                LOGGER.debug("Not re-queueing %s, crawl is stopping", item.url)
            return

        if not item.follow:
            return

        frontier.push_many(
            ((ref.url, ref.tag) for ref in result.references),
            depth=item.depth + 1,
            referrer=item.url,
        )

    def _fail(self, exc: Exception, item: WorkItem) -> None:
        with self._error_lock:
            if self._error is None:
                LOGGER.error("Crawl aborted while processing %s: %s", item.url, exc)
                self._error = exc
            else:
                LOGGER.debug("Further error after abort (%s): %s", item.url, exc)


__all__ = ["Scheduler"]
