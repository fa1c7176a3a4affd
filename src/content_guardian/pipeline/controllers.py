"""Controllers for source, rule, run, ticket, settings, and worker CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from pathlib import Path

from content_guardian.config import Settings
from content_guardian.pipeline.models import (
    Channel,
    ComplianceRuleCreate,
    ComplianceSettings,
    IngestionRunView,
    RiskLevel,
    Severity,
    SourceCreate,
    TicketStatus,
)
from content_guardian.pipeline.repository import PipelineRepository
from content_guardian.pipeline.state_machine import PipelineStateMachine
from content_guardian.pipeline.worker import IngestionWorker


@dataclass(slots=True)
class SourceAddCommand:
    """CLI inputs for source registration."""

    db_path: Path | None
    display_name: str
    channel: str
    country_code: str
    start_urls: tuple[str, ...]
    source_type: str
    crawl_frequency_minutes: int | None
    manual_only: bool


@dataclass(slots=True)
class RuleAddCommand:
    """CLI inputs for compliance rule registration."""

    db_path: Path | None
    name: str
    rule_type: str
    severity: str
    channels: tuple[str, ...]
    countries: tuple[str, ...]
    description: str | None


@dataclass(slots=True)
class RunTriggerCommand:
    db_path: Path | None
    source_id: str


@dataclass(slots=True)
class RunRefCommand:
    db_path: Path | None
    run_id: str


@dataclass(slots=True)
class RunListCommand:
    db_path: Path | None
    source_id: str | None
    limit: int


@dataclass(slots=True)
class TicketListCommand:
    db_path: Path | None
    status: str | None


@dataclass(slots=True)
class TicketStatusCommand:
    db_path: Path | None
    ticket_id: str
    status: str


@dataclass(slots=True)
class SettingsSetCommand:
    """CLI inputs for compliance settings update; `None` keeps the stored value."""

    db_path: Path | None
    due_hours_high: int | None = None
    due_hours_medium: int | None = None
    due_days_low: int | None = None
    escalation_after_hours: int | None = None
    retention_days: int | None = None
    uncertain_default_risk_level: str | None = None
    pii_redaction_enabled_default: bool | None = None
    default_crawl_frequency_minutes: int | None = None


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int | None = 1


class PipelineCliController:
    """Coordinates catalog, run, ticket, and worker CLI operations."""

    def add_source(self, command: SourceAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            frequency = command.crawl_frequency_minutes
            if frequency is None and not command.manual_only:
                frequency = repository.get_compliance_settings().default_crawl_frequency_minutes
            source = repository.add_source(
                SourceCreate(
                    display_name=command.display_name,
                    channel=Channel(command.channel.upper()),
                    country_code=command.country_code,
                    source_type=command.source_type,
                    start_urls=list(command.start_urls),
                    crawl_frequency_minutes=None if command.manual_only else frequency,
                ),
            )
        return [
            "Source added: "
            f"source_id={source.source_id} channel={source.channel.value} "
            f"country={source.country_code} urls={len(source.start_urls)} "
            f"frequency={_or_dash(source.crawl_frequency_minutes)}",
        ]

    def list_sources(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with _repository(settings) as repository:
            sources = repository.list_sources()
        if not sources:
            return ["No sources configured."]
        return [
            f"{source.source_id} {source.channel.value}/{source.country_code} "
            f"name={source.display_name!r} enabled={'yes' if source.is_enabled else 'no'} "
            f"frequency={_or_dash(source.crawl_frequency_minutes)} "
            f"last_run={_iso(source.last_run_at)} next_run={_iso(source.next_run_at)}"
            for source in sources
        ]

    def add_rule(self, command: RuleAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        payload = {"description": command.description} if command.description else {}
        with _repository(settings) as repository:
            rule = repository.add_rule(
                ComplianceRuleCreate(
                    name=command.name,
                    rule_type=command.rule_type,
                    severity=Severity(command.severity.upper()),
                    channels=list(command.channels),
                    countries=list(command.countries),
                    payload=payload,
                ),
            )
        return [
            "Rule added: "
            f"rule_id={rule.rule_id} version_id={rule.version_id} "
            f"severity={rule.severity.value} channels={','.join(rule.channels)} "
            f"countries={','.join(rule.countries)}",
        ]

    def list_rules(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with _repository(settings) as repository:
            rules = repository.list_rules()
        if not rules:
            return ["No compliance rules configured."]
        return [
            f"{rule.rule_id} v={rule.version_id} {rule.severity.value} {rule.rule_type} "
            f"name={rule.name!r} channels={','.join(rule.channels)} "
            f"countries={','.join(rule.countries)} active={'yes' if rule.is_active else 'no'}"
            for rule in rules
        ]

    def trigger_run(self, command: RunTriggerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            run, job = repository.trigger_run(source_id=command.source_id)
        return [f"Run queued: run_id={run.run_id} job_id={job.job_id} source={run.source_id}"]

    def cancel_run(self, command: RunRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            requested = repository.request_cancel(command.run_id)
            run = repository.require_run(command.run_id)
        if not requested:
            return [f"Run {run.run_id} is already {run.status.value}; nothing to cancel."]
        return [f"Cancellation requested for run {run.run_id}."]

    def show_run(self, command: RunRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            run = repository.require_run(command.run_id)
        return _render_run(run)

    def list_runs(self, command: RunListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            runs = repository.list_runs(source_id=command.source_id, limit=command.limit)
        if not runs:
            return ["No ingestion runs found."]
        return [
            f"{run.run_id} source={run.source_id} status={run.status.value} "
            f"trigger={run.trigger} fetched={run.counters.items_fetched} "
            f"changed={run.counters.items_changed} tickets={run.counters.tickets_created} "
            f"created={run.created_at.isoformat()}"
            for run in runs
        ]

    def list_tickets(self, command: TicketListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = TicketStatus(command.status.upper()) if command.status else None
        with _repository(settings) as repository:
            tickets = repository.list_tickets(status=status)
        if not tickets:
            return ["No tickets found."]
        return [
            f"{ticket.ticket_id} {ticket.status.value} risk={ticket.risk_level.value} "
            f"escalation={ticket.escalation_level.value} "
            f"overdue={'yes' if ticket.is_overdue else 'no'} due={ticket.due_at.isoformat()} "
            f"title={ticket.title!r}"
            for ticket in tickets
        ]

    def set_ticket_status(self, command: TicketStatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = TicketStatus(command.status.upper())
        with _repository(settings) as repository:
            updated = repository.set_ticket_status(ticket_id=command.ticket_id, status=status)
        if not updated:
            raise LookupError(f"Ticket not found: {command.ticket_id}")
        return [f"Ticket {command.ticket_id} set to {status.value}."]

    def show_settings(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with _repository(settings) as repository:
            current = repository.get_compliance_settings()
        return _render_settings(current)

    def update_settings(self, command: SettingsSetCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        changes: dict[str, object] = {}
        for item in fields(ComplianceSettings):
            value = getattr(command, item.name)
            if value is None:
                continue
            if item.name == "uncertain_default_risk_level":
                value = RiskLevel(str(value).upper())
            changes[item.name] = value
        with _repository(settings) as repository:
            saved = repository.save_compliance_settings(
                replace(repository.get_compliance_settings(), **changes),
            )
        return ["Settings updated.", *_render_settings(saved)]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            worker = IngestionWorker(
                repository=repository,
                state_machine=build_state_machine(settings, repository),
                worker_id=settings.worker.worker_id,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                stale_job_seconds=settings.worker.stale_job_seconds,
            )
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} canceled={summary.canceled} "
            f"requeued={summary.requeued} idle_polls={summary.idle_polls}",
        ]


def build_state_machine(
    settings: Settings,
    repository: PipelineRepository,
) -> PipelineStateMachine:
    return PipelineStateMachine(
        repository,
        settings=settings.pipeline,
        connector_settings=settings.connector,
        analysis_settings=settings.analysis,
    )


def _render_run(run: IngestionRunView) -> list[str]:
    counters = run.counters
    lines = [
        f"Run: {run.run_id}",
        f"Source: {run.source_id}",
        f"Status: {run.status.value} (trigger={run.trigger})",
        f"Cancel requested: {'yes' if run.cancel_requested else 'no'}",
        "Counters: "
        f"fetched={counters.items_fetched} changed={counters.items_changed} "
        f"failed={counters.items_failed} analysis_queued={counters.analysis_queued} "
        f"analysis_completed={counters.analysis_completed} "
        f"tickets={counters.tickets_created}",
        f"Started: {_iso(run.started_at)} Completed: {_iso(run.completed_at)}",
    ]
    if run.last_error:
        lines.append(f"Last error: {run.last_error}")
    lines.append("Steps:")
    for step in run.steps:
        line = f"  {step.name.value:<15} {step.status.value:<9} attempts={step.attempts}"
        if step.last_error:
            line += f" error={step.last_error}"
        lines.append(line)
    return lines


def _render_settings(current: ComplianceSettings) -> list[str]:
    lines: list[str] = []
    for item in fields(ComplianceSettings):
        value = getattr(current, item.name)
        if isinstance(value, RiskLevel):
            value = value.value
        lines.append(f"{item.name}={value}")
    return lines


def _iso(value: object) -> str:
    isoformat = getattr(value, "isoformat", None)
    return isoformat() if isoformat is not None else "-"


def _or_dash(value: object) -> str:
    return "-" if value is None else str(value)


@contextmanager
def _repository(settings: Settings) -> Iterator[PipelineRepository]:
    repository = PipelineRepository(settings.db_path)
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()
