"""Crawl-wide adaptive delay applied before every HTTP attempt."""

from __future__ import annotations

import logging
import threading
import time

from .errors import CrawlCancelled


LOGGER = logging.getLogger(__name__)

SLOW_DOWN_FACTOR = 2.0
SPEED_UP_FACTOR = 0.75


class Throttle:
    """One shared delay for all workers of a crawl.

    Rate-limit answers double the delay (at least one `step`, at most
    `max_delay`); successful answers shrink it by a quarter until it falls
    back to `min_delay`. There is no per-host state.
    """

    def __init__(
        self,
        *,
        min_delay: float = 0.0,
        max_delay: float = 30.0,
        step: float = 0.25,
    ) -> None:
        if min_delay < 0:
            raise ValueError("min_delay must be >= 0")
        if max_delay < min_delay:
            raise ValueError("max_delay must be >= min_delay")
        if step <= 0:
            raise ValueError("step must be > 0")

        self.min_delay = min_delay
        self.max_delay = max_delay
        self.step = step

        self._lock = threading.Lock()
        self._delay = min_delay

    @property
    def delay(self) -> float:
        with self._lock:
            return self._delay

    def sleep(self, cancel: threading.Event | None = None) -> None:
        """Block for the current delay, or until `cancel` is set."""

        delay = self.delay
        if cancel is None:
            if delay > 0:
                time.sleep(delay)
            return

        if cancel.wait(delay if delay > 0 else 0):
            raise CrawlCancelled("cancelled while throttling")

    def slow_down(self) -> None:
        with self._lock:
            previous = self._delay
            self._delay = min(
                self.max_delay,
                max(self._delay * SLOW_DOWN_FACTOR, self.step, self.min_delay),
            )
            current = self._delay
        LOGGER.info("Throttle slowing down: %.3fs -> %.3fs", previous, current)

    def speed_up(self) -> None:
        with self._lock:
            if self._delay <= self.min_delay:
                return
            reduced = self._delay * SPEED_UP_FACTOR
            if reduced < max(self.step, self.min_delay):
                reduced = self.min_delay
            self._delay = reduced
            current = self._delay
        LOGGER.debug("Throttle speeding up: %.3fs", current)


__all__ = ["Throttle"]
