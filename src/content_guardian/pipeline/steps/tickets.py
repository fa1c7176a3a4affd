"""Upsert-ticket step: remediation tickets for flagged revisions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from content_guardian.pipeline.context import PipelineContext
from content_guardian.pipeline.models import (
    AnalysisOutput,
    ComplianceSettings,
    ComplianceStatus,
    RiskLevel,
    Severity,
    TicketCreate,
)
from content_guardian.storage.common import utc_now

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 200
SUMMARY_MAX_CHARS = 1000
_SEVERITY_RISK = {
    Severity.HIGH: RiskLevel.HIGH,
    Severity.MEDIUM: RiskLevel.MEDIUM,
    Severity.LOW: RiskLevel.LOW,
}


def ticket_key_for(revision_id: str) -> str:
    return f"rev:{revision_id}"


def risk_level_for(output: AnalysisOutput, settings: ComplianceSettings) -> RiskLevel:
    """Highest violation severity; UNCERTAIN verdicts use the configured default."""

    if output.compliance_status is ComplianceStatus.UNCERTAIN:
        return settings.uncertain_default_risk_level
    severities = {violation.severity for violation in output.violations}
    for severity in (Severity.HIGH, Severity.MEDIUM, Severity.LOW):
        if severity in severities:
            return _SEVERITY_RISK[severity]
    return RiskLevel.UNCERTAIN_MEDIUM


def due_at_for(risk_level: RiskLevel, *, now: datetime, settings: ComplianceSettings) -> datetime:
    if risk_level is RiskLevel.HIGH:
        return now + timedelta(hours=settings.due_hours_high)
    if risk_level is RiskLevel.LOW:
        return now + timedelta(days=settings.due_days_low)
    return now + timedelta(hours=settings.due_hours_medium)


def upsert_ticket(ctx: PipelineContext) -> None:
    settings = ctx.repository.get_compliance_settings()
    created = 0
    for output in ctx.analysis_results:
        if output.compliance_status is ComplianceStatus.COMPLIANT:
            continue
        ticket_key = ticket_key_for(output.revision_id)
        if ctx.repository.get_ticket_by_key(ticket_key) is not None:
            continue

        stored_analysis = ctx.repository.get_analysis(output.revision_id)
        risk_level = risk_level_for(output, settings)
        explanations = [violation.explanation for violation in output.violations]
        ticket = ctx.repository.create_ticket(
            TicketCreate(
                ticket_key=ticket_key,
                revision_id=output.revision_id,
                content_id=output.content_id,
                analysis_id=stored_analysis[0] if stored_analysis is not None else None,
                source_id=ctx.source.source_id,
                channel=ctx.source.channel.value,
                country_code=ctx.source.country_code,
                risk_level=risk_level,
                title=(
                    explanations[0][:TITLE_MAX_CHARS]
                    if explanations
                    else f"{output.compliance_status.value} content detected"
                ),
                summary="; ".join(explanations)[:SUMMARY_MAX_CHARS],
                due_at=due_at_for(risk_level, now=utc_now(), settings=settings),
                details={
                    "compliance_status": output.compliance_status.value,
                    "violated_rule_version_ids": [
                        violation.rule_version_id for violation in output.violations
                    ],
                },
            ),
        )
        if ticket is not None:
            created += 1
            logger.info("Ticket %s created for revision %s", ticket.ticket_id, output.revision_id)

    ctx.tickets_created = created
