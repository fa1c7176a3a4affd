"""Analyze step: compliance verdicts for changed revisions."""

from __future__ import annotations

import logging
from datetime import datetime

from content_guardian.analysis.client import ComplianceAnalyzer
from content_guardian.analysis.parser import parse_analysis_response
from content_guardian.analysis.prompts import build_compliance_prompt
from content_guardian.errors import AnalysisRequestError, AnalysisUnavailableError
from content_guardian.pipeline.context import PipelineContext
from content_guardian.pipeline.models import (
    AnalysisOutput,
    AnalysisRecord,
    ComplianceRule,
    ComplianceStatus,
    StoredRevision,
)
from content_guardian.storage.common import utc_now

logger = logging.getLogger(__name__)


def analyze_llm(ctx: PipelineContext) -> None:
    """Analyze changed revisions; a revision already analyzed keeps its stored verdict."""

    results: list[AnalysisOutput] = []
    pending: list[StoredRevision] = []
    for stored in ctx.changed_revisions:
        existing = ctx.repository.get_analysis(stored.revision_id)
        if existing is not None:
            results.append(existing[1])
        else:
            pending.append(stored)

    if pending:
        results.extend(_analyze_pending(ctx, pending))

    ctx.analysis_results = results
    ctx.repository.update_run_counters(
        run_id=ctx.run_id,
        analysis_queued=len(ctx.changed_revisions),
        analysis_completed=len(results),
    )


def _analyze_pending(ctx: PipelineContext, pending: list[StoredRevision]) -> list[AnalysisOutput]:
    rules = ctx.repository.list_applicable_rules(
        channel=ctx.source.channel.value,
        country_code=ctx.source.country_code,
    )
    if not rules:
        return [
            _save(ctx, _verdict(stored, ComplianceStatus.COMPLIANT), rules=rules)
            for stored in pending
        ]

    try:
        analyzer = ctx.analyzer_factory()
    except AnalysisUnavailableError as exc:
        logger.warning("Analysis unavailable for run %s: %s", ctx.run_id, exc)
        return [
            _save(ctx, _verdict(stored, ComplianceStatus.UNCERTAIN, str(exc)), rules=rules)
            for stored in pending
        ]

    redact = ctx.repository.get_compliance_settings().pii_redaction_enabled_default
    try:
        return [_submit(ctx, analyzer, stored, rules=rules, redact=redact) for stored in pending]
    finally:
        close = getattr(analyzer, "close", None)
        if callable(close):
            close()


def _submit(
    ctx: PipelineContext,
    analyzer: ComplianceAnalyzer,
    stored: StoredRevision,
    *,
    rules: list[ComplianceRule],
    redact: bool,
) -> AnalysisOutput:
    revision = ctx.repository.get_revision_text(stored.revision_id)
    if revision is None:
        raise LookupError(f"Revision not found: {stored.revision_id}")
    prompt = build_compliance_prompt(revision, rules, redact=redact)

    ctx.repository.heartbeat_job(run_id=ctx.run_id)
    started_at = utc_now()
    try:
        raw = analyzer.analyze(prompt)
    except AnalysisRequestError as exc:
        logger.warning("Analysis failed for revision %s: %s", stored.revision_id, exc)
        output = _verdict(stored, ComplianceStatus.UNCERTAIN, str(exc))
    else:
        try:
            output = parse_analysis_response(
                raw,
                revision_id=stored.revision_id,
                content_id=stored.content_id,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Malformed analysis for revision %s: %s", stored.revision_id, exc)
            output = _verdict(
                stored,
                ComplianceStatus.UNCERTAIN,
                f"Malformed analysis response: {exc}",
            )
    completed_at = utc_now()

    return _save(
        ctx,
        output,
        rules=rules,
        provider=analyzer.provider,
        model=analyzer.model,
        redact=redact,
        started_at=started_at,
        completed_at=completed_at,
    )


def _verdict(
    stored: StoredRevision,
    status: ComplianceStatus,
    reason: str | None = None,
) -> AnalysisOutput:
    return AnalysisOutput(
        revision_id=stored.revision_id,
        content_id=stored.content_id,
        compliance_status=status,
        uncertain_reason=reason,
    )


def _save(  # noqa: PLR0913
    ctx: PipelineContext,
    output: AnalysisOutput,
    *,
    rules: list[ComplianceRule],
    provider: str | None = None,
    model: str | None = None,
    redact: bool | None = None,
    started_at: datetime | None = None,
    completed_at: datetime | None = None,
) -> AnalysisOutput:
    latency_ms = (
        int((completed_at - started_at).total_seconds() * 1000)
        if started_at is not None and completed_at is not None
        else None
    )
    ctx.repository.save_analysis(
        AnalysisRecord(
            output=output,
            channel=ctx.source.channel.value,
            country_code=ctx.source.country_code,
            applicable_rule_version_ids=[rule.version_id for rule in rules],
            llm_provider=provider,
            llm_model=model,
            pii_redaction_enabled=redact,
            analysis_started_at=started_at,
            analysis_completed_at=completed_at,
            analysis_latency_ms=latency_ms,
        ),
    )
    return output
