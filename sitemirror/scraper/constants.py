"""Default values shared by config, fetcher, and path mapping."""

from __future__ import annotations

DEFAULT_CONCURRENCY = 1
DEFAULT_MAX_DEPTH = 0  # 0 means unlimited
DEFAULT_IMAGE_QUALITY = 0  # 0 disables re-encoding
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_DELAY_SECONDS = 5.0
DEFAULT_TRIES = 1
DEFAULT_OUTPUT_DIR = "."

DEFAULT_THROTTLE_MIN_SECONDS = 0.0
DEFAULT_THROTTLE_MAX_SECONDS = 30.0
DEFAULT_THROTTLE_STEP_SECONDS = 0.25

DEFAULT_USER_AGENT = "sitemirror/0.1 (+https://pypi.org/project/sitemirror/)"
DEFAULT_HTTP_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

BACKOFF_FACTOR = 7
BACKOFF_DIVISOR = 4  # must stay below BACKOFF_FACTOR

STREAM_CHUNK_SIZE = 64 * 1024

PAGE_EXTENSION = ".html"
PAGE_DIR_INDEX = "index" + PAGE_EXTENSION
EXTERNAL_DOMAIN_PREFIX = "_"

JSON_INDENT = 2
SUPPORTED_CONFIG_SUFFIXES = (".json", ".yaml", ".yml")

# Mirror path -> origin URL records, kept beside the mirrored hosts.
URL_INDEX_PATH = ".sitemirror/url_index.jsonl"

__all__ = [
    "BACKOFF_DIVISOR",
    "BACKOFF_FACTOR",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_HTTP_HEADERS",
    "DEFAULT_IMAGE_QUALITY",
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_OUTPUT_DIR",
    "DEFAULT_RETRY_DELAY_SECONDS",
    "DEFAULT_THROTTLE_MAX_SECONDS",
    "DEFAULT_THROTTLE_MIN_SECONDS",
    "DEFAULT_THROTTLE_STEP_SECONDS",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_TRIES",
    "DEFAULT_USER_AGENT",
    "EXTERNAL_DOMAIN_PREFIX",
    "JSON_INDENT",
    "PAGE_DIR_INDEX",
    "PAGE_EXTENSION",
    "STREAM_CHUNK_SIZE",
    "SUPPORTED_CONFIG_SUFFIXES",
    "URL_INDEX_PATH",
]
