"""Core type definitions for the mirror pipeline.

This module is intentionally dependency-light so other scraper modules can import
shared records without introducing cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ContentKind(str, Enum):
    """Response categories the download pipeline dispatches on."""

    HTML = "html"
    CSS = "css"
    IMAGE = "image"
    OTHER = "other"


class SourceTag(str, Enum):
    """Element category a reference was discovered in."""

    ANCHOR = "a"
    LINK = "link"
    SCRIPT = "script"
    BODY = "body"
    IMAGE = "img"
    CSS = "css"


# Tags scanned in HTML documents, in extraction order.
HTML_REFERENCE_TAGS: tuple[SourceTag, ...] = (
    SourceTag.ANCHOR,
    SourceTag.LINK,
    SourceTag.SCRIPT,
    SourceTag.BODY,
    SourceTag.IMAGE,
)

# References needed to render a page; fetched even when they live on another host.
RESOURCE_TAGS = frozenset(
    {SourceTag.LINK, SourceTag.SCRIPT, SourceTag.BODY, SourceTag.IMAGE, SourceTag.CSS}
)


def media_type(content_type: str | None) -> str:
    """Return the lower-cased `type/subtype` part of a Content-Type header."""

    return (content_type or "").split(";", maxsplit=1)[0].strip().lower()


def infer_content_kind(content_type: str | None) -> ContentKind:
    """Map an HTTP Content-Type onto the pipeline's dispatch categories."""

    normalized = media_type(content_type)

    if normalized in {"text/html", "application/xhtml+xml"}:
        return ContentKind.HTML
    if normalized == "text/css":
        return ContentKind.CSS
    if normalized.startswith("image/"):
        return ContentKind.IMAGE
    return ContentKind.OTHER


@dataclass(frozen=True, slots=True)
class Reference:
    """An absolute, fragment-free URL found in fetched content."""

    url: str
    tag: SourceTag


@dataclass(frozen=True, slots=True)
class WorkItem:
    """A URL waiting to be fetched.

    `follow` is False for off-host resources: they are stored but the references
    they contain are not scheduled. `requeues` counts how often the item was put
    back after a 429 or 204 answer.
    """

    url: str
    depth: int
    follow: bool = True
    requeues: int = 0
    referrer: str | None = None


@dataclass(slots=True)
class WorkResult:
    """Outcome of one pass of the download pipeline over a work item."""

    item: WorkItem
    status_code: int | None = None
    references: list[Reference] = field(default_factory=list)
    requeue: bool = False


__all__ = [
    "ContentKind",
    "HTML_REFERENCE_TAGS",
    "RESOURCE_TAGS",
    "Reference",
    "SourceTag",
    "WorkItem",
    "WorkResult",
    "infer_content_kind",
    "media_type",
]
