"""Text normalization, hashing, and URL canonicalization for change detection."""

from __future__ import annotations

import hashlib
import html
import re
from urllib.parse import urlparse, urlunparse

_SCRIPT_STYLE_RE = re.compile(
    r"<(script|style|noscript)\b[^>]*>.*?</\1>",
    re.IGNORECASE | re.DOTALL,
)
_BODY_RE = re.compile(r"<body\b[^>]*>(.*)</body>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize_text(text: str) -> str:
    """Lower-case, collapse whitespace, and strip punctuation."""

    collapsed = _WHITESPACE_RE.sub(" ", text.lower())
    return _PUNCTUATION_RE.sub("", collapsed).strip()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalized_text_of(parts: list[str | None]) -> str:
    return normalize_text(" ".join(part for part in parts if part))


def content_key(normalized_text: str, *, url: str | None, external_id: str) -> str:
    """Hash over normalized text and the canonical URL (external id when no URL)."""

    anchor = canonicalize_url(url) if url else external_id
    return sha256_hex(normalized_text + anchor)


def html_to_text(raw_html: str) -> str:
    """Convert HTML markup into whitespace-normalized plain text."""

    if not raw_html:
        return ""
    no_scripts = _SCRIPT_STYLE_RE.sub(" ", raw_html)
    stripped = _TAG_RE.sub(" ", no_scripts)
    unescaped = html.unescape(stripped)
    return _WHITESPACE_RE.sub(" ", unescaped).strip()


def extract_body_text(raw_html: str) -> str:
    """Body text with scripts and styles removed; whole document when no body tag."""

    match = _BODY_RE.search(raw_html)
    return html_to_text(match.group(1) if match else raw_html)


def canonicalize_url(url: str) -> str:
    """Normalize URL for idempotent hashing and uniqueness checks."""

    parsed = urlparse(url.strip())
    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    if netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]

    normalized_path = re.sub(r"/{2,}", "/", parsed.path or "/")
    normalized_query = "&".join(sorted(filter(None, parsed.query.split("&"))))
    cleaned = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=normalized_path,
        params="",
        query=normalized_query,
        fragment="",
    )
    return str(urlunparse(cleaned))
