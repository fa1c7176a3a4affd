"""CLI entrypoint for content-guardian."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from content_guardian import __version__
from content_guardian.pipeline.controllers import (
    PipelineCliController,
    RuleAddCommand,
    RunListCommand,
    RunRefCommand,
    RunTriggerCommand,
    SettingsSetCommand,
    SourceAddCommand,
    TicketListCommand,
    TicketStatusCommand,
    WorkerRunCommand,
)
from content_guardian.pipeline.models import Channel, RiskLevel, Severity, TicketStatus
from content_guardian.scheduler.controllers import SchedulerCliController, SchedulerRunCommand

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()
SCHEDULER_CONTROLLER = SchedulerCliController()

CHANNEL_CHOICE = click.Choice([channel.value for channel in Channel], case_sensitive=False)
SEVERITY_CHOICE = click.Choice([severity.value for severity in Severity], case_sensitive=False)
TICKET_STATUS_CHOICE = click.Choice(
    [status.value for status in TicketStatus],
    case_sensitive=False,
)


@click.group()
@click.version_option(version=__version__, prog_name="content-guardian")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity for pipeline, worker, and scheduler messages.",
)
def content_guardian(log_level: str) -> None:
    """Content ingestion and compliance ticketing CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@content_guardian.group()
def sources() -> None:
    """Monitored source commands."""


@sources.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", "display_name", required=True, help="Human-readable source name.")
@click.option("--channel", type=CHANNEL_CHOICE, required=True, help="Publishing channel.")
@click.option("--country", "country_code", required=True, help="ISO country code, e.g. `DE`.")
@click.option(
    "--url",
    "start_urls",
    multiple=True,
    help="Start URL (page or video). Can be repeated.",
)
@click.option(
    "--source-type",
    default="WEB_OWNED",
    show_default=True,
    help="Free-form source classification.",
)
@click.option(
    "--frequency-minutes",
    "crawl_frequency_minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Crawl frequency; defaults to the configured `default_crawl_frequency_minutes`.",
)
@click.option(
    "--manual-only",
    is_flag=True,
    default=False,
    help="Never schedule periodic runs for this source.",
)
def sources_add(  # noqa: PLR0913
    db_path: Path | None,
    display_name: str,
    channel: str,
    country_code: str,
    start_urls: tuple[str, ...],
    source_type: str,
    crawl_frequency_minutes: int | None,
    manual_only: bool,
) -> None:
    """Register a source to monitor."""

    _emit_lines(
        PIPELINE_CONTROLLER.add_source(
            SourceAddCommand(
                db_path=db_path,
                display_name=display_name,
                channel=channel,
                country_code=country_code,
                start_urls=start_urls,
                source_type=source_type,
                crawl_frequency_minutes=crawl_frequency_minutes,
                manual_only=manual_only,
            ),
        ),
    )


@sources.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def sources_list(db_path: Path | None) -> None:
    """List configured sources with their schedule."""

    _emit_lines(PIPELINE_CONTROLLER.list_sources(db_path))


@content_guardian.group()
def rules() -> None:
    """Compliance rule commands."""


@rules.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", required=True, help="Rule name.")
@click.option("--rule-type", default="KEYWORD", show_default=True, help="Rule type.")
@click.option("--severity", type=SEVERITY_CHOICE, required=True, help="Violation severity.")
@click.option(
    "--channel",
    "channels",
    type=CHANNEL_CHOICE,
    multiple=True,
    required=True,
    help="Channel the rule applies to. Can be repeated.",
)
@click.option(
    "--country",
    "countries",
    multiple=True,
    required=True,
    help="Country code the rule applies to. Can be repeated.",
)
@click.option("--description", default=None, help="Rule text given to the analyzer.")
def rules_add(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    rule_type: str,
    severity: str,
    channels: tuple[str, ...],
    countries: tuple[str, ...],
    description: str | None,
) -> None:
    """Add a compliance rule scoped by channel and country."""

    _emit_lines(
        PIPELINE_CONTROLLER.add_rule(
            RuleAddCommand(
                db_path=db_path,
                name=name,
                rule_type=rule_type,
                severity=severity,
                channels=channels,
                countries=countries,
                description=description,
            ),
        ),
    )


@rules.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def rules_list(db_path: Path | None) -> None:
    """List compliance rules."""

    _emit_lines(PIPELINE_CONTROLLER.list_rules(db_path))


@content_guardian.group()
def runs() -> None:
    """Ingestion run commands."""


@runs.command("trigger")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("source_id")
def runs_trigger(db_path: Path | None, source_id: str) -> None:
    """Create a run for SOURCE_ID and queue it for the worker."""

    _emit_lines(
        _lookup(
            lambda: PIPELINE_CONTROLLER.trigger_run(
                RunTriggerCommand(db_path=db_path, source_id=source_id),
            ),
        ),
    )


@runs.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("run_id")
def runs_cancel(db_path: Path | None, run_id: str) -> None:
    """Request cancellation; observed before the next step starts."""

    _emit_lines(
        _lookup(
            lambda: PIPELINE_CONTROLLER.cancel_run(RunRefCommand(db_path=db_path, run_id=run_id)),
        ),
    )


@runs.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("run_id")
def runs_show(db_path: Path | None, run_id: str) -> None:
    """Show run status, counters, and per-step records."""

    _emit_lines(
        _lookup(
            lambda: PIPELINE_CONTROLLER.show_run(RunRefCommand(db_path=db_path, run_id=run_id)),
        ),
    )


@runs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--source-id", default=None, help="Only runs of this source.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max number of runs to print.",
)
def runs_list(db_path: Path | None, source_id: str | None, limit: int) -> None:
    """List recent ingestion runs."""

    _emit_lines(
        PIPELINE_CONTROLLER.list_runs(
            RunListCommand(db_path=db_path, source_id=source_id, limit=limit),
        ),
    )


@content_guardian.group()
def tickets() -> None:
    """Remediation ticket commands."""


@tickets.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--status", type=TICKET_STATUS_CHOICE, default=None, help="Status filter.")
def tickets_list(db_path: Path | None, status: str | None) -> None:
    """List tickets with risk, escalation tier, and due date."""

    _emit_lines(PIPELINE_CONTROLLER.list_tickets(TicketListCommand(db_path=db_path, status=status)))


@tickets.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("ticket_id")
@click.argument("status", type=TICKET_STATUS_CHOICE)
def tickets_status(db_path: Path | None, ticket_id: str, status: str) -> None:
    """Move TICKET_ID to STATUS."""

    _emit_lines(
        _lookup(
            lambda: PIPELINE_CONTROLLER.set_ticket_status(
                TicketStatusCommand(db_path=db_path, ticket_id=ticket_id, status=status),
            ),
        ),
    )


@content_guardian.group()
def worker() -> None:
    """Pipeline job queue worker."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one claim-execute cycle or loop until idle.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Stop the loop after this many consecutive empty polls.",
)
@click.option(
    "--forever",
    is_flag=True,
    default=False,
    help="Keep polling in loop mode until SIGINT/SIGTERM.",
)
def worker_run(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int,
    forever: bool,
) -> None:
    """Claim queued runs and execute their pipeline."""

    _emit_lines(
        PIPELINE_CONTROLLER.run_worker(
            WorkerRunCommand(
                db_path=db_path,
                once=once and not forever,
                max_jobs=max_jobs,
                max_idle_polls=None if forever else max_idle_polls,
            ),
        ),
    )


@content_guardian.group()
def scheduler() -> None:
    """Recurring job scheduler."""


@scheduler.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many ticks instead of running until SIGINT/SIGTERM.",
)
def scheduler_run(db_path: Path | None, max_ticks: int | None) -> None:
    """Run ingestion scan, escalation sweep, and retention purge on a timer."""

    _emit_lines(
        SCHEDULER_CONTROLLER.run(
            SchedulerRunCommand(db_path=db_path, once=False, max_ticks=max_ticks),
        ),
    )


@scheduler.command("tick")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def scheduler_tick(db_path: Path | None) -> None:
    """Run every scheduled job once and report per-job outcome."""

    _emit_lines(SCHEDULER_CONTROLLER.run(SchedulerRunCommand(db_path=db_path, once=True)))


@content_guardian.group()
def maintenance() -> None:
    """One-off maintenance jobs."""


@maintenance.command("escalate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def maintenance_escalate(db_path: Path | None) -> None:
    """Escalate stale open tickets and flag overdue ones."""

    _emit_lines(SCHEDULER_CONTROLLER.escalate(db_path))


@maintenance.command("purge")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def maintenance_purge(db_path: Path | None) -> None:
    """Apply the retention policy (at most once per 24h)."""

    _emit_lines(SCHEDULER_CONTROLLER.purge(db_path))


@content_guardian.group()
def settings() -> None:
    """Compliance settings commands."""


@settings.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def settings_show(db_path: Path | None) -> None:
    """Show SLA, escalation, retention, and redaction settings."""

    _emit_lines(PIPELINE_CONTROLLER.show_settings(db_path))


@settings.command("set")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--due-hours-high", type=click.IntRange(min=1), default=None)
@click.option("--due-hours-medium", type=click.IntRange(min=1), default=None)
@click.option("--due-days-low", type=click.IntRange(min=1), default=None)
@click.option("--escalation-after-hours", type=click.IntRange(min=1), default=None)
@click.option("--retention-days", type=click.IntRange(min=1), default=None)
@click.option(
    "--uncertain-risk-level",
    "uncertain_default_risk_level",
    type=click.Choice([level.value for level in RiskLevel], case_sensitive=False),
    default=None,
)
@click.option(
    "--pii-redaction/--no-pii-redaction",
    "pii_redaction_enabled_default",
    default=None,
)
@click.option("--default-crawl-frequency-minutes", type=click.IntRange(min=1), default=None)
def settings_set(  # noqa: PLR0913
    db_path: Path | None,
    due_hours_high: int | None,
    due_hours_medium: int | None,
    due_days_low: int | None,
    escalation_after_hours: int | None,
    retention_days: int | None,
    uncertain_default_risk_level: str | None,
    pii_redaction_enabled_default: bool | None,
    default_crawl_frequency_minutes: int | None,
) -> None:
    """Update compliance settings; omitted options keep their stored value."""

    _emit_lines(
        PIPELINE_CONTROLLER.update_settings(
            SettingsSetCommand(
                db_path=db_path,
                due_hours_high=due_hours_high,
                due_hours_medium=due_hours_medium,
                due_days_low=due_days_low,
                escalation_after_hours=escalation_after_hours,
                retention_days=retention_days,
                uncertain_default_risk_level=uncertain_default_risk_level,
                pii_redaction_enabled_default=pii_redaction_enabled_default,
                default_crawl_frequency_minutes=default_crawl_frequency_minutes,
            ),
        ),
    )


def _lookup(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except LookupError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    content_guardian()
