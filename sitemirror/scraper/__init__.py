"""Website mirroring engine: config, shared types, and crawl components."""

from .config import Cookie, CrawlConfig, load_config, load_cookies, make_headers, save_config
from .download import Downloader
from .errors import (
    CrawlCancelled,
    CrawlError,
    DocumentParseError,
    RetryExhaustedError,
    TransportError,
    UnexpectedStatusError,
)
from .fetcher import FetchOutcome, FetchResponse, Fetcher, RetryMachine, RetryState, backoff
from .frontier import EnqueueResult, EnqueueStatus, Frontier, ProcessedSet
from .images import ImageRecoder
from .mapping import PathMapper, page_file_path, relative_link
from .references import find_css_urls, find_references, find_tag_urls, parse_document
from .rewrite import rewrite_css, rewrite_document
from .scheduler import Scheduler
from .scope import CrawlScope
from .stats import StatsCollector
from .storage import Storage
from .throttle import Throttle
from .types import (
    ContentKind,
    Reference,
    SourceTag,
    WorkItem,
    WorkResult,
    infer_content_kind,
)
from .url import host_from_url, resolve_url, url_key

__all__ = [
    "ContentKind",
    "Cookie",
    "CrawlCancelled",
    "CrawlConfig",
    "CrawlError",
    "CrawlScope",
    "DocumentParseError",
    "Downloader",
    "EnqueueResult",
    "EnqueueStatus",
    "FetchOutcome",
    "FetchResponse",
    "Fetcher",
    "Frontier",
    "ImageRecoder",
    "PathMapper",
    "ProcessedSet",
    "Reference",
    "RetryExhaustedError",
    "RetryMachine",
    "RetryState",
    "Scheduler",
    "SourceTag",
    "StatsCollector",
    "Storage",
    "Throttle",
    "TransportError",
    "UnexpectedStatusError",
    "WorkItem",
    "WorkResult",
    "backoff",
    "find_css_urls",
    "find_references",
    "find_tag_urls",
    "host_from_url",
    "infer_content_kind",
    "load_config",
    "load_cookies",
    "make_headers",
    "page_file_path",
    "parse_document",
    "relative_link",
    "resolve_url",
    "rewrite_css",
    "rewrite_document",
    "save_config",
    "url_key",
]
