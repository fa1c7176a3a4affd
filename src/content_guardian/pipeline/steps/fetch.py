"""Fetch step: pull raw items through the source connector."""

from __future__ import annotations

from content_guardian.pipeline.context import PipelineContext


def fetch_items(ctx: PipelineContext) -> None:
    connector = ctx.connector_factory(ctx.source)
    items = connector.fetch(ctx.source)

    for item in items:
        ctx.repository.record_ingestion_item(
            run_id=ctx.run_id,
            source=ctx.source,
            external_id=item.external_id,
            url=item.url,
        )

    ctx.fetched_items = list(items)
    ctx.repository.update_run_counters(run_id=ctx.run_id, items_fetched=len(items))
