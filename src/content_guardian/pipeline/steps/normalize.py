"""Normalize/hash step: derive change-detection keys for fetched items."""

from __future__ import annotations

from content_guardian.ingestion.cleaning import (
    canonicalize_url,
    content_key,
    normalized_text_of,
    sha256_hex,
)
from content_guardian.pipeline.context import PipelineContext
from content_guardian.pipeline.models import NormalizedItem


def normalize_hash(ctx: PipelineContext) -> None:
    normalized: list[NormalizedItem] = []
    for item in ctx.fetched_items:
        text = normalized_text_of(item.text_fields())
        normalized.append(
            NormalizedItem(
                item=item,
                normalized_text_hash=sha256_hex(text),
                content_key=content_key(text, url=item.url, external_id=item.external_id),
                canonical_url=canonicalize_url(item.url) if item.url else None,
            ),
        )
    ctx.normalized_items = normalized
