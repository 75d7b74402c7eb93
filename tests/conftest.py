"""Shared fixtures: an in-memory website served through a fake requests.Session."""

from __future__ import annotations

import threading
from typing import Any

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from sitemirror.scraper import CrawlConfig


def make_response(
    url: str,
    status: int = 200,
    body: bytes = b"",
    *,
    content_type: str | None = "text/html; charset=utf-8",
    headers: dict[str, str] | None = None,
    effective_url: str | None = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = body
    response._content_consumed = True
    response.url = effective_url or url
    merged: dict[str, str] = {}
    if content_type is not None:
        merged["Content-Type"] = content_type
    merged.update(headers or {})
    response.headers = CaseInsensitiveDict(merged)
    response.encoding = None
    return response


# A canned response, an exception to raise, or a callable(url, headers).
Entry = Any


class FakeSite:
    """URL -> canned responses. The last entry of a route repeats forever."""

    def __init__(self) -> None:
        self.routes: dict[str, list[Entry]] = {}
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.sessions: list["FakeSession"] = []
        self._lock = threading.Lock()

    def add(self, url: str, *entries: Entry) -> None:
        self.routes[url] = list(entries)

    def page(self, url: str, body: str | bytes, **kwargs: Any) -> None:
        data = body.encode("utf-8") if isinstance(body, str) else body
        self.add(url, make_response(url, 200, data, **kwargs))

    def asset(self, url: str, body: bytes, content_type: str, **kwargs: Any) -> None:
        self.add(url, make_response(url, 200, body, content_type=content_type, **kwargs))

    def status(self, url: str, *statuses: int) -> None:
        self.add(url, *(make_response(url, code, b"", content_type=None) for code in statuses))

    def requested(self, url: str) -> int:
        with self._lock:
            return sum(1 for called, _ in self.calls if called == url)

    def serve(self, url: str, headers: dict[str, str]) -> requests.Response:
        with self._lock:
            self.calls.append((url, dict(headers)))
            entries = self.routes.get(url)
            if not entries:
                return make_response(url, 404, b"", content_type=None)
            entry = entries.pop(0) if len(entries) > 1 else entries[0]

        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return entry(url, headers)
        return entry

    def session_factory(self) -> "FakeSession":
        session = FakeSession(self)
        with self._lock:
            self.sessions.append(session)
        return session


class FakeSession(requests.Session):
    def __init__(self, site: FakeSite) -> None:
        super().__init__()
        self.site = site

    def get(self, url, **kwargs):  # type: ignore[override]
        return self.site.serve(url, dict(kwargs.get("headers") or {}))


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def make_config(tmp_path):
    def _make(url: str = "https://example.org/", **overrides: Any) -> CrawlConfig:
        values: dict[str, Any] = {
            "url": url,
            "output_dir": str(tmp_path),
            "retry_delay_seconds": 0.001,
            "throttle_min_seconds": 0.0,
            "throttle_max_seconds": 0.05,
            "throttle_step_seconds": 0.001,
            "timeout_seconds": 5.0,
        }
        values.update(overrides)
        return CrawlConfig(**values)

    return _make


@pytest.fixture
def response_factory():
    return make_response
