from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import allure
from conftest import FakeConnector

from content_guardian.pipeline.models import (
    Channel,
    EscalationLevel,
    FetchedItem,
    JobStatus,
    RiskLevel,
    RunStatus,
    SourceCreate,
    TicketCreate,
    TicketStatus,
)
from content_guardian.pipeline.repository import RETENTION_RUN_EVENT
from content_guardian.scheduler.jobs import (
    run_escalation_sweep,
    run_periodic_ingestion,
    run_retention_purge,
)
from content_guardian.storage.common import utc_now

pytestmark = [
    allure.epic("Scheduler"),
    allure.feature("Maintenance Jobs"),
]


def _ticket(repository, source, *, key: str = "rev:1", due_in: timedelta = timedelta(hours=24)):
    return repository.create_ticket(
        TicketCreate(
            ticket_key=key,
            revision_id=key.removeprefix("rev:"),
            content_id="content-1",
            analysis_id=None,
            source_id=source.source_id,
            channel=source.channel.value,
            country_code=source.country_code,
            risk_level=RiskLevel.HIGH,
            title="Promises guaranteed returns",
            summary="Promises guaranteed returns",
            due_at=utc_now() + due_in,
            details={"compliance_status": "NON_COMPLIANT"},
        ),
    )


@allure.story("Periodic ingestion")
def test_periodic_ingestion_queues_due_sources_only(repository, web_source) -> None:
    repository.add_source(
        SourceCreate(display_name="Manual", channel=Channel.WEB, country_code="DE"),
    )
    repository.add_source(
        SourceCreate(
            display_name="Paused",
            channel=Channel.WEB,
            country_code="DE",
            crawl_frequency_minutes=30,
            is_enabled=False,
        ),
    )
    now = utc_now()

    result = run_periodic_ingestion(repository, now=now)

    assert result.queued == 1
    (run_id,) = result.queued_run_ids
    run = repository.require_run(run_id)
    assert run.source_id == web_source.source_id
    assert run.trigger == "scheduled"
    assert run.status is RunStatus.RUNNING
    (job,) = repository.list_jobs(status=JobStatus.QUEUED)
    assert job.run_id == run_id

    source = repository.get_source(web_source.source_id)
    assert source is not None
    assert source.next_run_at == now + timedelta(minutes=60)


@allure.story("Periodic ingestion")
def test_periodic_ingestion_waits_for_next_run_at(repository, web_source) -> None:
    now = utc_now()
    run_periodic_ingestion(repository, now=now)

    assert run_periodic_ingestion(repository, now=now + timedelta(minutes=59)).queued == 0
    assert run_periodic_ingestion(repository, now=now + timedelta(minutes=60)).queued == 1
    assert len(repository.list_jobs()) == 2


@allure.story("Escalation")
def test_escalation_moves_one_tier_per_sweep_and_stops_at_global(repository, web_source) -> None:
    ticket = _ticket(repository, web_source)
    assert ticket is not None
    step = timedelta(hours=49)
    now = utc_now()

    levels = []
    for sweep in range(1, 4):
        result = run_escalation_sweep(repository, now=now + step * sweep)
        levels.append(repository.get_ticket(ticket.ticket_id).escalation_level)
        assert result.escalated == (1 if sweep < 3 else 0)

    assert levels == [EscalationLevel.REGIONAL, EscalationLevel.GLOBAL, EscalationLevel.GLOBAL]
    events = repository.list_ticket_events(ticket.ticket_id)
    assert [details for name, details in events if name == "ESCALATED"] == [
        {"from": "LOCAL", "to": "REGIONAL"},
        {"from": "REGIONAL", "to": "GLOBAL"},
    ]
    assert len(repository.list_audit_events(event_type="ESCALATION_TRIGGERED")) == 2


@allure.story("Escalation")
def test_recently_touched_ticket_is_not_escalated(repository, web_source) -> None:
    ticket = _ticket(repository, web_source)

    result = run_escalation_sweep(repository, now=utc_now() + timedelta(hours=47))

    assert result.escalated == 0
    assert repository.get_ticket(ticket.ticket_id).escalation_level is EscalationLevel.LOCAL


@allure.story("Escalation")
def test_escalation_rereads_settings_on_every_sweep(repository, web_source) -> None:
    ticket = _ticket(repository, web_source)
    now = utc_now() + timedelta(hours=2)
    assert run_escalation_sweep(repository, now=now).escalated == 0

    settings = repository.get_compliance_settings()
    repository.save_compliance_settings(replace(settings, escalation_after_hours=1))

    result = run_escalation_sweep(repository, now=now)

    assert [change.ticket_id for change in result.changes] == [ticket.ticket_id]


@allure.story("Overdue")
def test_overdue_open_tickets_are_flagged_once(repository, web_source) -> None:
    overdue = _ticket(repository, web_source, key="rev:1", due_in=-timedelta(hours=1))
    resolved = _ticket(repository, web_source, key="rev:2", due_in=-timedelta(hours=1))
    on_time = _ticket(repository, web_source, key="rev:3")
    repository.set_ticket_status(ticket_id=resolved.ticket_id, status=TicketStatus.RESOLVED)

    first = run_escalation_sweep(repository, now=utc_now())
    second = run_escalation_sweep(repository, now=utc_now())

    assert first.newly_overdue == 1
    assert second.newly_overdue == 0
    assert repository.get_ticket(overdue.ticket_id).is_overdue is True
    assert repository.get_ticket(resolved.ticket_id).is_overdue is False
    assert repository.get_ticket(on_time.ticket_id).is_overdue is False


@allure.story("Retention")
def test_retention_purge_deletes_old_audit_events_and_finished_runs(
    repository,
    web_source,
    build_state_machine,
) -> None:
    item = FetchedItem(external_id="https://example.com/offer", main_text="Offer")
    finished = repository.create_run(source_id=web_source.source_id)
    build_state_machine(connector=FakeConnector([item])).execute(
        source_id=web_source.source_id,
        run_id=finished.run_id,
    )
    running, _ = repository.trigger_run(source_id=web_source.source_id)
    audit_events = len(repository.list_audit_events())
    assert audit_events > 0
    now = utc_now() + timedelta(days=181)

    result = run_retention_purge(repository, now=now)

    assert result.throttled is False
    assert result.retention_days == 180
    assert result.counts.audit_events_deleted == audit_events
    assert result.counts.ingestion_runs_deleted == 1
    assert repository.get_run(finished.run_id) is None
    assert repository.get_run(running.run_id) is not None
    assert [job.run_id for job in repository.list_jobs()] == [running.run_id]

    (marker,) = repository.list_audit_events()
    assert marker.event_type == RETENTION_RUN_EVENT
    assert marker.entity_type == "SYSTEM_SETTINGS"
    assert marker.entity_id == "default"
    assert marker.payload == {
        "retentionDays": 180,
        "auditEventsDeleted": audit_events,
        "ingestionRunsDeleted": 1,
        "cutoffDate": (now - timedelta(days=180)).isoformat(),
    }


@allure.story("Retention")
def test_retention_purge_runs_at_most_once_a_day(repository, web_source) -> None:
    now = utc_now()
    assert run_retention_purge(repository, now=now).throttled is False
    repository.create_run(source_id=web_source.source_id)

    throttled = run_retention_purge(repository, now=now + timedelta(hours=23))

    assert throttled.throttled is True
    assert throttled.counts.audit_events_deleted == 0
    assert throttled.counts.ingestion_runs_deleted == 0
    assert len(repository.list_audit_events(event_type=RETENTION_RUN_EVENT)) == 1

    later = run_retention_purge(repository, now=now + timedelta(hours=25))
    assert later.throttled is False
    assert len(repository.list_audit_events(event_type=RETENTION_RUN_EVENT)) == 2


@allure.story("Retention")
def test_retention_window_follows_current_settings(repository) -> None:
    settings = repository.get_compliance_settings()
    repository.save_compliance_settings(replace(settings, retention_days=30))

    result = run_retention_purge(repository, now=utc_now())

    assert result.retention_days == 30
    marker = repository.latest_audit_event(RETENTION_RUN_EVENT)
    assert marker is not None
    assert marker.payload["retentionDays"] == 30
