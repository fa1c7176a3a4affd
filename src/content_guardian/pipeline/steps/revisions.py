"""Store-revision and diff steps."""

from __future__ import annotations

import logging

from content_guardian.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)


def store_revision(ctx: PipelineContext) -> None:
    ctx.stored_revisions = [
        ctx.repository.store_revision(source=ctx.source, normalized=item)
        for item in ctx.normalized_items
    ]


def diff(ctx: PipelineContext) -> None:
    """Only new items and revisions still awaiting analysis propagate."""

    for stored in ctx.stored_revisions:
        stored.is_changed = stored.is_new or stored.revision_created or stored.analysis_pending
    ctx.changed_revisions = [stored for stored in ctx.stored_revisions if stored.is_changed]
    ctx.repository.update_run_counters(
        run_id=ctx.run_id,
        items_changed=len(ctx.changed_revisions),
    )
    logger.debug(
        "Run %s: %d of %d stored items changed",
        ctx.run_id,
        len(ctx.changed_revisions),
        len(ctx.stored_revisions),
    )
