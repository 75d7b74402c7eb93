"""Exceptions that terminate a crawl."""

from __future__ import annotations


class CrawlError(Exception):
    """Base class for errors that abort the whole crawl."""


class TransportError(CrawlError):
    """The HTTP exchange failed below the status-code level (timeout, DNS, TLS)."""


class UnexpectedStatusError(CrawlError):
    """The server answered with a status the pipeline has no handling for."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"unexpected HTTP response {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class RetryExhaustedError(CrawlError):
    """Server errors persisted through every allowed attempt."""

    def __init__(self, url: str, status_code: int | None, attempts: int) -> None:
        status = "unknown" if status_code is None else str(status_code)
        super().__init__(f"{url} response status {status} after {attempts} attempt(s)")
        self.url = url
        self.status_code = status_code
        self.attempts = attempts


class DocumentParseError(CrawlError):
    """An HTML document could not be parsed."""


class CrawlCancelled(CrawlError):
    """The crawl was cancelled from outside."""


__all__ = [
    "CrawlCancelled",
    "CrawlError",
    "DocumentParseError",
    "RetryExhaustedError",
    "TransportError",
    "UnexpectedStatusError",
]
