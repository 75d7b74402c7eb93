"""HTTP GET with throttling, conditional requests, and a 5xx retry loop."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from enum import Enum
from typing import Callable, Iterator

import requests

from .config import CrawlConfig
from .constants import BACKOFF_DIVISOR, BACKOFF_FACTOR, STREAM_CHUNK_SIZE
from .errors import CrawlCancelled, RetryExhaustedError, TransportError, UnexpectedStatusError
from .stats import StatsCollector
from .throttle import Throttle
from .types import ContentKind, infer_content_kind


LOGGER = logging.getLogger(__name__)


class FetchOutcome(str, Enum):
    """How the download pipeline should treat a finished fetch."""

    OK = "ok"
    NOT_MODIFIED = "not_modified"
    NO_CONTENT = "no_content"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    TERMINAL = "terminal"


def backoff(delay: float, floor: float) -> float:
    """Grow a retry delay by 7/4, never dropping below `floor`."""

    return max(delay * BACKOFF_FACTOR / BACKOFF_DIVISOR, floor)


class RetryMachine:
    """Attempt budget for one URL.

    Transitions: ATTEMPTING -> BACKOFF(delay) -> ATTEMPTING ... -> TERMINAL.
    A retryable failure moves to BACKOFF while attempts remain and to TERMINAL
    once they are used up; any final answer moves straight to TERMINAL.
    """

    def __init__(self, tries: int, initial_delay: float) -> None:
        self.tries = max(1, tries)
        self.floor = initial_delay
        self.delay = initial_delay
        self.attempts = 0
        self.state = RetryState.ATTEMPTING
        self.last_status: int | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.tries

    def begin_attempt(self) -> None:
        if self.state == RetryState.TERMINAL:
            raise RuntimeError("retry machine already terminal")
        self.state = RetryState.ATTEMPTING
        self.attempts += 1

    def retryable_failure(self, status_code: int | None) -> RetryState:
        self.last_status = status_code
        if self.exhausted:
            self.state = RetryState.TERMINAL
        else:
            self.delay = backoff(self.delay, self.floor)
            self.state = RetryState.BACKOFF
        return self.state

    def finish(self, status_code: int) -> RetryState:
        self.last_status = status_code
        self.state = RetryState.TERMINAL
        return self.state


def parse_http_date(value: str | None) -> datetime | None:
    """Parse an HTTP date header into an aware UTC datetime; None when unusable."""

    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


@dataclass(slots=True)
class FetchResponse:
    """Result of `Fetcher.get`.

    For `OK` outcomes the body has not been read yet; use `read()` or
    `iter_content()` and always `close()` the response.
    """

    url: str
    effective_url: str
    outcome: FetchOutcome
    status_code: int
    content_type: str | None = None
    last_modified: datetime | None = None
    elapsed_ms: int = 0
    attempts: int = 1
    response: requests.Response | None = field(default=None, repr=False)

    @property
    def content_kind(self) -> ContentKind:
        return infer_content_kind(self.content_type)

    def read(self) -> bytes:
        if self.response is None:
            return b""
        return self.response.content or b""

    def iter_content(self, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        if self.response is None:
            return iter(())
        return self.response.iter_content(chunk_size=chunk_size)

    def close(self) -> None:
        if self.response is not None:
            self.response.close()


class Fetcher:
    """Fetch URLs through one `requests.Session` per worker thread.

    Every attempt first waits for the shared throttle. Server errors and
    dropped connections are retried with a growing delay; all other answers
    are final and classified as a `FetchOutcome`.
    """

    def __init__(
        self,
        config: CrawlConfig,
        throttle: Throttle,
        stats: StatsCollector | None = None,
        *,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.config = config
        self.throttle = throttle
        self.stats = stats
        self.session_factory = session_factory

        self._thread_local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    def get(
        self,
        url: str,
        *,
        if_modified_since: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> FetchResponse:
        """GET one URL, following redirects, with the configured attempt budget."""

        headers: dict[str, str] = {}
        if if_modified_since is not None:
            headers["If-Modified-Since"] = format_http_date(if_modified_since)

        machine = RetryMachine(self.config.tries, self.config.retry_delay_seconds)
        started = time.perf_counter()

        while True:
            self.throttle.sleep(cancel)
            machine.begin_attempt()

            response = self._send(url, headers)
            if response is None:
                if machine.retryable_failure(None) == RetryState.TERMINAL:
                    raise RetryExhaustedError(url, machine.last_status, machine.attempts)
                LOGGER.warning(
                    "Connection failed for %s, retrying in %.2fs", url, machine.delay
                )
                self._wait(machine.delay, cancel)
                continue

            status = response.status_code
            if self.stats is not None:
                self.stats.record_status(status)
            LOGGER.debug(
                "GET %s status=%s content_type=%s content_length=%s last_modified=%s",
                url,
                status,
                response.headers.get("Content-Type"),
                response.headers.get("Content-Length"),
                response.headers.get("Last-Modified"),
            )

            if status >= 500:
                response.close()
                if machine.retryable_failure(status) == RetryState.TERMINAL:
                    raise RetryExhaustedError(url, status, machine.attempts)
                LOGGER.warning(
                    "HTTP server error %s for %s, retrying in %.2fs", status, url, machine.delay
                )
                self._wait(machine.delay, cancel)
                continue

            machine.finish(status)
            outcome = self._classify(url, status)
            if outcome != FetchOutcome.OK:
                response.close()

            return FetchResponse(
                url=url,
                effective_url=response.url or url,
                outcome=outcome,
                status_code=status,
                content_type=response.headers.get("Content-Type"),
                last_modified=parse_http_date(response.headers.get("Last-Modified")),
                elapsed_ms=int((time.perf_counter() - started) * 1000),
                attempts=machine.attempts,
                response=response if outcome == FetchOutcome.OK else None,
            )

    def close(self) -> None:
        """Close every session this fetcher opened."""

        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _classify(self, url: str, status: int) -> FetchOutcome:
        if status == 429:
            self.throttle.slow_down()
            return FetchOutcome.RATE_LIMITED
        if 400 <= status < 500:
            LOGGER.debug("HTTP client error %s for %s", status, url)
            return FetchOutcome.CLIENT_ERROR
        if status == 304:
            self.throttle.speed_up()
            return FetchOutcome.NOT_MODIFIED
        if status == 204:
            self.throttle.speed_up()
            return FetchOutcome.NO_CONTENT
        if 200 <= status < 300:
            self.throttle.speed_up()
            return FetchOutcome.OK
        raise UnexpectedStatusError(url, status)

    def _send(self, url: str, headers: dict[str, str]) -> requests.Response | None:
        """Perform one attempt; None means the connection dropped and may be retried."""

        session = self._thread_local_session()
        try:
            return session.get(
                url,
                headers=headers,
                timeout=self.config.timeout_seconds,
                allow_redirects=True,
                stream=True,
            )
        except requests.Timeout as exc:
            self._record_transport_error()
            raise TransportError(f"sending HTTP GET {url}: {exc.__class__.__name__}: {exc}") from exc
        except requests.ConnectionError as exc:
            self._record_transport_error()
            LOGGER.debug("Connection error for %s: %s", url, exc)
            return None
        except requests.RequestException as exc:
            self._record_transport_error()
            raise TransportError(f"sending HTTP GET {url}: {exc.__class__.__name__}: {exc}") from exc

    def _record_transport_error(self) -> None:
        if self.stats is not None:
            self.stats.record_transport_error()

    @staticmethod
    def _wait(delay: float, cancel: threading.Event | None) -> None:
        if cancel is None:
            time.sleep(delay)
            return
        if cancel.wait(delay):
            raise CrawlCancelled("cancelled during retry backoff")

    def _thread_local_session(self) -> requests.Session:
        session = getattr(self._thread_local, "session", None)
        if session is None:
            session = self._new_session()
            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _new_session(self) -> requests.Session:
        session = self.session_factory()
        session.headers.update(self.config.request_headers())
        for cookie in self.config.cookies:
            expires = int(cookie.expires.timestamp()) if cookie.expires else None
            session.cookies.set(cookie.name, cookie.value, expires=expires)
        if self.config.proxy:
            session.proxies.update({"http": self.config.proxy, "https": self.config.proxy})
        return session


__all__ = [
    "FetchOutcome",
    "FetchResponse",
    "Fetcher",
    "RetryMachine",
    "RetryState",
    "backoff",
    "format_http_date",
    "parse_http_date",
]
