"""Main-content extraction from HTML pages using trafilatura."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import trafilatura

from content_guardian.ingestion.cleaning import extract_body_text

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExtractionResult:
    text: str
    is_success: bool
    used_fallback: bool = False


@dataclass(slots=True)
class PageMetadata:
    title: str | None = None
    description: str | None = None


def extract_main_text(html: str, *, url: str | None = None, max_chars: int = 0) -> ExtractionResult:
    """Extract main page text.

    Tries trafilatura in precision mode, then recall mode, and finally falls back
    to the whole body text with scripts and styles removed.
    """

    if not html or not html.strip():
        return ExtractionResult(text="", is_success=False)

    text: str | None = None
    for options in ({"favor_precision": True, "deduplicate": True}, {"favor_recall": True}):
        try:
            text = trafilatura.extract(html, url=url, include_tables=True, **options)
        except Exception as exc:  # noqa: BLE001
            logger.warning("trafilatura.extract failed for %s: %s", url or "<unknown>", exc)
            text = None
        if text:
            break

    used_fallback = False
    if not text:
        text = extract_body_text(html)
        used_fallback = True

    if max_chars > 0 and len(text) > max_chars:
        text = text[:max_chars].rstrip()
    return ExtractionResult(text=text, is_success=bool(text), used_fallback=used_fallback)


def extract_page_metadata(html: str, *, url: str | None = None) -> PageMetadata:
    """Title and description from the page head (Open Graph and meta tags first)."""

    if not html or not html.strip():
        return PageMetadata()
    try:
        document = trafilatura.extract_metadata(html, default_url=url)
    except Exception as exc:  # noqa: BLE001
        logger.warning("trafilatura.extract_metadata failed for %s: %s", url or "<unknown>", exc)
        return PageMetadata()
    if document is None:
        return PageMetadata()
    return PageMetadata(
        title=document.title or None,
        description=document.description or None,
    )
