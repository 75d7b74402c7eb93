"""Thread-safe crawl statistics aggregation utilities."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
import threading
from typing import Any, Mapping

from .frontier import EnqueueResult, EnqueueStatus


class StatsCollector:
    """Collect and summarize mirror runtime statistics.

    The collector is thread-safe and shared by the frontier, the fetcher, and
    the download workers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self._started_at = datetime.now(timezone.utc)
        self._finished_at: datetime | None = None

        self._enqueue_counts: dict[str, int] = defaultdict(int)
        self._duplicates_discarded = 0
        self._requeued = 0
        self._dropped = 0
        self._frontier_snapshot: dict[str, int | bool] = {}

        self._status_code_counts: dict[str, int] = defaultdict(int)
        self._transport_errors = 0
        self._fetches = 0
        self._fetch_elapsed_ms_total = 0

        self._files_stored = 0
        self._bytes_stored = 0
        self._storage_failures = 0
        self._not_modified_rescans = 0

    def record_enqueue(self, result_or_status: EnqueueResult | EnqueueStatus) -> None:
        """Record one frontier enqueue outcome."""

        if isinstance(result_or_status, EnqueueResult):
            status = result_or_status.status
        else:
            status = result_or_status

        with self._lock:
            self._enqueue_counts[status.value] += 1

    def record_duplicate(self) -> None:
        """Record a dequeued item discarded because its URL was already processed."""

        with self._lock:
            self._duplicates_discarded += 1

    def record_requeue(self) -> None:
        with self._lock:
            self._requeued += 1

    def record_dropped(self) -> None:
        with self._lock:
            self._dropped += 1

    def record_frontier_snapshot(self, snapshot: Mapping[str, int | bool]) -> None:
        """Attach the final frontier counters for diagnostics."""

        with self._lock:
            self._frontier_snapshot = dict(snapshot)

    def record_status(self, status_code: int) -> None:
        """Record the status of one HTTP attempt (retries count separately)."""

        with self._lock:
            self._status_code_counts[str(status_code)] += 1

    def record_transport_error(self) -> None:
        with self._lock:
            self._transport_errors += 1

    def record_fetch(self, elapsed_ms: int) -> None:
        """Record one completed fetch and its wall time."""

        with self._lock:
            self._fetches += 1
            self._fetch_elapsed_ms_total += max(0, int(elapsed_ms))

    def record_stored(self, num_bytes: int) -> None:
        with self._lock:
            self._files_stored += 1
            self._bytes_stored += max(0, int(num_bytes))

    def record_storage_failure(self) -> None:
        with self._lock:
            self._storage_failures += 1

    def record_rescan(self) -> None:
        """Record a not-modified answer whose local copy was rescanned for links."""

        with self._lock:
            self._not_modified_rescans += 1

    def finish(self) -> None:
        """Mark crawl as finished."""

        with self._lock:
            if self._finished_at is None:
                self._finished_at = datetime.now(timezone.utc)

    def status_counts(self) -> dict[int, int]:
        """Return the HTTP status histogram keyed by integer status."""

        with self._lock:
            return {int(code): count for code, count in self._status_code_counts.items()}

    @property
    def files_stored(self) -> int:
        with self._lock:
            return self._files_stored

    @property
    def storage_failures(self) -> int:
        with self._lock:
            return self._storage_failures

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-serializable summary payload."""

        with self._lock:
            end = self._finished_at or datetime.now(timezone.utc)
            duration_seconds = max(0.0, (end - self._started_at).total_seconds())

            elapsed_avg = (
                self._fetch_elapsed_ms_total / self._fetches if self._fetches > 0 else 0.0
            )

            return {
                "started_at": self._started_at.isoformat(),
                "finished_at": self._finished_at.isoformat() if self._finished_at else None,
                "duration_seconds": duration_seconds,
                "throughput": {
                    "fetched_per_second": (
                        self._fetches / duration_seconds if duration_seconds > 0 else 0.0
                    ),
                    "bytes_per_second": (
                        self._bytes_stored / duration_seconds if duration_seconds > 0 else 0.0
                    ),
                },
                "frontier": {
                    "enqueue_status_counts": dict(self._enqueue_counts),
                    "duplicates_discarded": self._duplicates_discarded,
                    "requeued": self._requeued,
                    "dropped": self._dropped,
                    "snapshot": dict(self._frontier_snapshot),
                },
                "fetch": {
                    "fetches": self._fetches,
                    "status_code_counts": dict(self._status_code_counts),
                    "transport_errors": self._transport_errors,
                    "elapsed_ms_total": self._fetch_elapsed_ms_total,
                    "elapsed_ms_avg": elapsed_avg,
                    "not_modified_rescans": self._not_modified_rescans,
                },
                "storage": {
                    "files_stored": self._files_stored,
                    "bytes_stored": self._bytes_stored,
                    "failures": self._storage_failures,
                },
            }


__all__ = ["StatsCollector"]
