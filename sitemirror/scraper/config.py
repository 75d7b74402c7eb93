"""Typed mirror configuration with JSON/YAML load/save helpers."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml  # type: ignore

from .constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_HTTP_HEADERS,
    DEFAULT_IMAGE_QUALITY,
    DEFAULT_MAX_DEPTH,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_THROTTLE_MAX_SECONDS,
    DEFAULT_THROTTLE_MIN_SECONDS,
    DEFAULT_THROTTLE_STEP_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_TRIES,
    DEFAULT_USER_AGENT,
    JSON_INDENT,
    SUPPORTED_CONFIG_SUFFIXES,
)
from .url import is_http_url


LOGGER = logging.getLogger(__name__)


def _as_float(value: Any, key: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid float for '{key}': {value!r}") from exc


def _as_int(value: Any, key: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid int for '{key}': {value!r}") from exc


def _as_str_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ValueError(f"Invalid list for '{key}': {value!r}")


@dataclass(frozen=True, slots=True)
class Cookie:
    """A cookie sent with every request; empty fields are left out when saved."""

    name: str
    value: str = ""
    expires: datetime | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name}
        if self.value:
            payload["value"] = self.value
        if self.expires is not None:
            payload["expires"] = self.expires.isoformat()
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "Cookie":
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError(f"Cookie without a name: {payload!r}")
        expires_raw = payload.get("expires")
        expires = None
        if isinstance(expires_raw, datetime):
            expires = expires_raw
        elif expires_raw:
            try:
                expires = datetime.fromisoformat(str(expires_raw).replace("Z", "+00:00"))
            except ValueError as exc:
                raise ValueError(f"Invalid cookie expiry for '{name}': {expires_raw!r}") from exc
        return cls(name=name, value=str(payload.get("value") or ""), expires=expires)


def make_headers(headers: Iterable[str]) -> dict[str, str]:
    """Parse `Name: value` strings; entries without a colon are ignored."""

    parsed: dict[str, str] = {}
    for header in headers:
        name, sep, value = header.partition(":")
        if not sep or not name.strip():
            LOGGER.warning("Ignoring malformed header %r", header)
            continue
        parsed[name.strip()] = value.strip()
    return parsed


def load_cookies(path: str | Path) -> list[Cookie]:
    """Load a JSON list of cookies, e.g. `[{"name": "session", "value": "..."}]`."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"Cookie file {path} must contain a JSON list")
    return [Cookie.from_json(item) for item in payload]


@dataclass(slots=True)
class CrawlConfig:
    """Mirror configuration consumed by the scheduler, downloader, and fetcher."""

    url: str
    includes: list[str] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)

    concurrency: int = DEFAULT_CONCURRENCY
    max_depth: int = DEFAULT_MAX_DEPTH
    image_quality: int = DEFAULT_IMAGE_QUALITY

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    tries: int = DEFAULT_TRIES

    output_dir: str = DEFAULT_OUTPUT_DIR
    username: str | None = None
    password: str | None = None

    cookies: list[Cookie] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    proxy: str | None = None
    user_agent: str = DEFAULT_USER_AGENT

    throttle_min_seconds: float = DEFAULT_THROTTLE_MIN_SECONDS
    throttle_max_seconds: float = DEFAULT_THROTTLE_MAX_SECONDS
    throttle_step_seconds: float = DEFAULT_THROTTLE_STEP_SECONDS

    def __post_init__(self) -> None:
        self.url = (self.url or "").strip()
        if not is_http_url(self.url):
            raise ValueError(f"A http(s) start URL is required, got {self.url!r}")

        # Out-of-range values fall back to usable defaults.
        if self.concurrency < 1:
            self.concurrency = 1
        if self.tries < 1:
            self.tries = 1
        if self.retry_delay_seconds <= 0:
            self.retry_delay_seconds = DEFAULT_RETRY_DELAY_SECONDS

        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0 (0 means unlimited)")
        if not 0 <= self.image_quality <= 100:
            raise ValueError("image_quality must be within 0..100 (0 disables re-encoding)")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.throttle_min_seconds < 0:
            raise ValueError("throttle_min_seconds must be >= 0")
        if self.throttle_max_seconds < self.throttle_min_seconds:
            raise ValueError("throttle_max_seconds must be >= throttle_min_seconds")
        if self.throttle_step_seconds <= 0:
            raise ValueError("throttle_step_seconds must be > 0")

        self.cookies = [
            cookie if isinstance(cookie, Cookie) else Cookie.from_json(cookie)
            for cookie in self.cookies
        ]

    @property
    def auth_header(self) -> str | None:
        """Basic authorization value derived from username/password, if set."""

        if not self.username:
            return None
        raw = f"{self.username}:{self.password or ''}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def request_headers(self) -> dict[str, str]:
        """Return headers sent with every request, extra headers winning."""

        merged: dict[str, str] = dict(DEFAULT_HTTP_HEADERS)
        if self.user_agent:
            merged["User-Agent"] = self.user_agent
        auth = self.auth_header
        if auth:
            merged["Authorization"] = auth
        merged.update(self.headers)
        return merged

    def to_dict(self) -> dict[str, Any]:
        """Serialize config for manifests and reproducibility."""

        return {
            "url": self.url,
            "includes": list(self.includes),
            "excludes": list(self.excludes),
            "concurrency": self.concurrency,
            "max_depth": self.max_depth,
            "image_quality": self.image_quality,
            "timeout_seconds": self.timeout_seconds,
            "retry_delay_seconds": self.retry_delay_seconds,
            "tries": self.tries,
            "output_dir": self.output_dir,
            "username": self.username,
            "password": self.password,
            "cookies": [cookie.to_json() for cookie in self.cookies],
            "headers": dict(self.headers),
            "proxy": self.proxy,
            "user_agent": self.user_agent,
            "throttle_min_seconds": self.throttle_min_seconds,
            "throttle_max_seconds": self.throttle_max_seconds,
            "throttle_step_seconds": self.throttle_step_seconds,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CrawlConfig":
        """Build config from a parsed dictionary."""

        if "url" not in payload:
            raise ValueError("Config missing required key: 'url'")

        return cls(
            url=str(payload["url"]),
            includes=_as_str_list(payload.get("includes"), "includes"),
            excludes=_as_str_list(payload.get("excludes"), "excludes"),
            concurrency=_as_int(payload.get("concurrency", DEFAULT_CONCURRENCY), "concurrency"),
            max_depth=_as_int(payload.get("max_depth", DEFAULT_MAX_DEPTH), "max_depth"),
            image_quality=int(payload.get("image_quality", DEFAULT_IMAGE_QUALITY)),
            timeout_seconds=float(payload.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            retry_delay_seconds=float(
                payload.get("retry_delay_seconds", DEFAULT_RETRY_DELAY_SECONDS)
            ),
            tries=_as_int(payload.get("tries", DEFAULT_TRIES), "tries"),
            output_dir=str(payload.get("output_dir", DEFAULT_OUTPUT_DIR)),
            username=payload.get("username"),
            password=payload.get("password"),
            cookies=[Cookie.from_json(item) for item in payload.get("cookies") or []],
            headers={str(k): str(v) for k, v in dict(payload.get("headers") or {}).items()},
            proxy=payload.get("proxy"),
            user_agent=str(payload.get("user_agent", DEFAULT_USER_AGENT)),
            throttle_min_seconds=_as_float(
                payload.get("throttle_min_seconds", DEFAULT_THROTTLE_MIN_SECONDS),
                "throttle_min_seconds",
            ),
            throttle_max_seconds=_as_float(
                payload.get("throttle_max_seconds", DEFAULT_THROTTLE_MAX_SECONDS),
                "throttle_max_seconds",
            ),
            throttle_step_seconds=_as_float(
                payload.get("throttle_step_seconds", DEFAULT_THROTTLE_STEP_SECONDS),
                "throttle_step_seconds",
            ),
        )


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML config at {path} must be a mapping at top level")
    return data


def load_config(path: str | Path) -> CrawlConfig:
    """Load CrawlConfig from JSON/YAML path."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ValueError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )

    if suffix == ".json":
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ValueError(f"Config at {config_path} must be a mapping")

    return CrawlConfig.from_dict(payload)


def save_config(config: CrawlConfig, path: str | Path) -> None:
    """Save CrawlConfig as JSON or YAML based on file extension."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return

    raise ValueError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "Cookie",
    "CrawlConfig",
    "load_config",
    "load_cookies",
    "make_headers",
    "save_config",
]
