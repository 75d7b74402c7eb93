"""Reference discovery in HTML documents and stylesheets."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Iterator

from bs4 import BeautifulSoup
from bs4.element import Tag

from .errors import DocumentParseError
from .types import HTML_REFERENCE_TAGS, Reference, SourceTag
from .url import resolve_url, strip_fragment


LOGGER = logging.getLogger(__name__)

# Attributes carrying URLs for each HTML tag category.
TAG_ATTRIBUTES: dict[SourceTag, tuple[str, ...]] = {
    SourceTag.ANCHOR: ("href",),
    SourceTag.LINK: ("href",),
    SourceTag.SCRIPT: ("src",),
    SourceTag.BODY: ("background",),
    SourceTag.IMAGE: ("src", "srcset"),
}

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"@import\s+([\"'])([^\"']+)\1", re.IGNORECASE)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")


def parse_document(data: bytes | str) -> BeautifulSoup:
    """Parse HTML bytes into a navigable tree (lxml backend)."""

    try:
        return BeautifulSoup(data, "lxml")
    except Exception as exc:
        raise DocumentParseError(f"parsing HTML: {exc.__class__.__name__}: {exc}") from exc


def parse_srcset(value: str) -> list[str]:
    """Return the URL part of every candidate in a `srcset` attribute."""

    urls: list[str] = []
    if not value:
        return urls
    for candidate in SRCSET_SPLIT_RE.split(value.strip()):
        if not candidate:
            continue
        parts = WS_RE.split(candidate.strip())
        if parts and parts[0]:
            urls.append(parts[0])
    return urls


def iter_tag_values(doc: BeautifulSoup, tag: SourceTag) -> Iterator[tuple[Tag, str, str]]:
    """Yield `(element, attribute, raw value)` for every URL occurrence of a category."""

    for element in doc.find_all(tag.value):
        for attribute in TAG_ATTRIBUTES[tag]:
            value = element.get(attribute)
            if not value or not isinstance(value, str):
                continue
            if attribute == "srcset":
                for candidate in parse_srcset(value):
                    yield element, attribute, candidate
            else:
                yield element, attribute, value


def _resolve_logged(base_url: str, value: str, *, context: str) -> str | None:
    try:
        return resolve_url(base_url, value)
    except ValueError as exc:
        LOGGER.warning("Skipping malformed URL %r in %s of %s: %s", value, context, base_url, exc)
        return None


def find_tag_urls(doc: BeautifulSoup, tag: SourceTag, base_url: str) -> list[str]:
    """Return absolute, fragment-free URLs for one tag category in document order."""

    urls: list[str] = []
    for _, attribute, value in iter_tag_values(doc, tag):
        resolved = _resolve_logged(base_url, value, context=f"<{tag.value} {attribute}>")
        if resolved is None:
            continue
        urls.append(strip_fragment(resolved))
    return urls


def find_references(
    doc: BeautifulSoup,
    base_url: str,
    tags: Iterable[SourceTag] = HTML_REFERENCE_TAGS,
) -> list[Reference]:
    """Collect references of the given categories, category by category."""

    references: list[Reference] = []
    for tag in tags:
        references.extend(Reference(url=url, tag=tag) for url in find_tag_urls(doc, tag, base_url))
    return references


def iter_css_values(css_text: str) -> Iterator[str]:
    for match in CSS_URL_RE.finditer(css_text):
        yield match.group(2).strip()
    for match in CSS_IMPORT_RE.finditer(css_text):
        yield match.group(2).strip()


def find_css_urls(css_text: str, base_url: str) -> list[Reference]:
    """Return `url(...)` and `@import "..."` references of a stylesheet."""

    references: list[Reference] = []
    for value in iter_css_values(css_text):
        resolved = _resolve_logged(base_url, value, context="stylesheet")
        if resolved is None:
            continue
        references.append(Reference(url=strip_fragment(resolved), tag=SourceTag.CSS))
    return references


__all__ = [
    "CSS_IMPORT_RE",
    "CSS_URL_RE",
    "TAG_ATTRIBUTES",
    "find_css_urls",
    "find_references",
    "find_tag_urls",
    "iter_css_values",
    "iter_tag_values",
    "parse_document",
    "parse_srcset",
]
