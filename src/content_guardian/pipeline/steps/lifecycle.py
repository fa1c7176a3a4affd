"""Run start and finish bookkeeping steps."""

from __future__ import annotations

import logging

from content_guardian.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)


def run_start(ctx: PipelineContext) -> None:
    ctx.repository.add_audit_event(
        event_type="INGESTION_RUN_STARTED",
        entity_type="INGESTION_RUN",
        entity_id=ctx.run_id,
        channel=ctx.source.channel.value,
        country_code=ctx.source.country_code,
        message=f"Ingestion run started for source '{ctx.source.display_name}'",
    )
    logger.info("Run %s started for source %s", ctx.run_id, ctx.source.source_id)


def run_finish(ctx: PipelineContext) -> None:
    """Mark the run SUCCEEDED and advance the source schedule."""

    status = ctx.repository.complete_run(
        run_id=ctx.run_id,
        source=ctx.source,
        fetched=len(ctx.fetched_items),
        changed=len(ctx.changed_revisions),
        tickets_created=ctx.tickets_created,
    )
    logger.info(
        "Run %s finished with status %s: fetched=%d changed=%d tickets=%d",
        ctx.run_id,
        status.value,
        len(ctx.fetched_items),
        len(ctx.changed_revisions),
        ctx.tickets_created,
    )
