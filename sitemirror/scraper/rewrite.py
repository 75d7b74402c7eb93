"""Rewrite references in mirrored documents so they resolve inside the mirror."""

from __future__ import annotations

import logging
import re
from typing import Callable

from bs4 import BeautifulSoup

from .mapping import PathMapper, relative_link
from .references import (
    CSS_IMPORT_RE,
    CSS_URL_RE,
    SRCSET_SPLIT_RE,
    TAG_ATTRIBUTES,
    WS_RE,
    find_css_urls,
)
from .types import HTML_REFERENCE_TAGS, Reference, SourceTag
from .url import fragment_of, resolve_url, strip_fragment


LOGGER = logging.getLogger(__name__)

# Decides whether the resource behind a reference ends up in the mirror.
MirrorPredicate = Callable[[str, SourceTag], bool]


class LinkRewriter:
    """Turn references of one document into links between mapped files."""

    def __init__(
        self,
        *,
        base_url: str,
        document_path: str,
        mapper: PathMapper,
        is_mirrored: MirrorPredicate,
    ) -> None:
        self.base_url = base_url
        self.document_path = document_path
        self.mapper = mapper
        self.is_mirrored = is_mirrored

    def rewrite_value(self, value: str, tag: SourceTag) -> str:
        try:
            resolved = resolve_url(self.base_url, value)
        except ValueError:
            return value
        if resolved is None:
            return value

        target = strip_fragment(resolved)
        if not self.is_mirrored(target, tag):
            return resolved

        is_page = tag == SourceTag.ANCHOR
        local = relative_link(self.document_path, self.mapper.map(target, is_page))
        fragment = fragment_of(resolved)
        if is_page and fragment:
            local = f"{local}#{fragment}"
        return local

    def rewrite_srcset(self, value: str) -> str:
        parts: list[str] = []
        for candidate in SRCSET_SPLIT_RE.split(value.strip()):
            if not candidate:
                continue
            pieces = WS_RE.split(candidate.strip())
            url_out = self.rewrite_value(pieces[0], SourceTag.IMAGE)
            parts.append(" ".join([url_out, *pieces[1:]]))
        return ", ".join(parts)


def rewrite_document(
    doc: BeautifulSoup,
    *,
    base_url: str,
    page_path: str,
    mapper: PathMapper,
    is_mirrored: MirrorPredicate,
) -> tuple[bytes | None, bool]:
    """Rewrite URL attributes of a parsed page in place.

    Returns the serialized document and True when at least one attribute changed,
    or `(None, False)` when the original bytes can be stored unchanged.
    """

    rewriter = LinkRewriter(
        base_url=base_url,
        document_path=page_path,
        mapper=mapper,
        is_mirrored=is_mirrored,
    )

    changed = False
    for tag in HTML_REFERENCE_TAGS:
        for element in doc.find_all(tag.value):
            for attribute in TAG_ATTRIBUTES[tag]:
                value = element.get(attribute)
                if not value or not isinstance(value, str):
                    continue
                if attribute == "srcset":
                    new_value = rewriter.rewrite_srcset(value)
                else:
                    new_value = rewriter.rewrite_value(value, tag)
                if new_value != value:
                    element[attribute] = new_value
                    changed = True

    if not changed:
        return None, False
    return doc.encode(doc.original_encoding or "utf-8"), True


def rewrite_css(
    data: bytes,
    *,
    base_url: str,
    css_path: str,
    mapper: PathMapper,
    is_mirrored: MirrorPredicate,
) -> tuple[bytes, list[Reference]]:
    """Collect stylesheet references and rewrite the mirrored ones.

    Undecodable bytes survive the round trip untouched.
    """

    text = data.decode("utf-8", errors="surrogateescape")
    references = find_css_urls(text, base_url)

    rewriter = LinkRewriter(
        base_url=base_url,
        document_path=css_path,
        mapper=mapper,
        is_mirrored=is_mirrored,
    )

    def repl_url(match: re.Match) -> str:
        quote = match.group(1) or ""
        new_value = rewriter.rewrite_value(match.group(2).strip(), SourceTag.CSS)
        return f"url({quote}{new_value}{quote})"

    def repl_import(match: re.Match) -> str:
        quote = match.group(1)
        new_value = rewriter.rewrite_value(match.group(2).strip(), SourceTag.CSS)
        return f"@import {quote}{new_value}{quote}"

    rewritten = CSS_URL_RE.sub(repl_url, text)
    rewritten = CSS_IMPORT_RE.sub(repl_import, rewritten)
    if rewritten == text:
        return data, references
    return rewritten.encode("utf-8", errors="surrogateescape"), references


__all__ = [
    "LinkRewriter",
    "MirrorPredicate",
    "rewrite_css",
    "rewrite_document",
]
