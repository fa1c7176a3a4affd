from __future__ import annotations

from datetime import timedelta

import allure
from conftest import FakeAnalyzer, FakeConnector, non_compliant_response
from sqlalchemy import text

from content_guardian.pipeline.models import (
    ComplianceRuleCreate,
    FetchedItem,
    JobStatus,
    RiskLevel,
    RunStatus,
    Severity,
    StepName,
    StepRecord,
    StepStatus,
)
from content_guardian.pipeline.steps import PIPELINE_STEPS, PipelineStep
from content_guardian.pipeline.worker import IngestionWorker
from content_guardian.runtime import StopFlag
from content_guardian.storage.common import utc_now

pytestmark = [
    allure.epic("Ingestion Pipeline"),
    allure.feature("Job Queue Worker"),
]


class _ExplodingStateMachine:
    def execute(self, *, source_id: str, run_id: str):
        raise RuntimeError("database went away")


def _worker(repository, state_machine, **kwargs) -> IngestionWorker:
    return IngestionWorker(
        repository=repository,
        state_machine=state_machine,
        worker_id="worker-test",
        poll_interval_seconds=0.0,
        **kwargs,
    )


def _offer(text: str) -> FetchedItem:
    return FetchedItem(
        external_id="https://example.com/offer",
        url="https://example.com/offer",
        title="Offer",
        main_text=text,
    )


def test_triggered_run_changed_content_yields_one_revision_analysis_and_ticket(
    repository,
    web_source,
    build_state_machine,
) -> None:
    rule = repository.add_rule(
        ComplianceRuleCreate(
            name="No guaranteed returns",
            rule_type="KEYWORD",
            severity=Severity.HIGH,
            channels=["WEB"],
            countries=["DE"],
        ),
    )
    connector = FakeConnector([_offer("Invest now")])
    analyzer = FakeAnalyzer(response=non_compliant_response(rule_version_id=rule.version_id))
    worker = _worker(repository, build_state_machine(connector=connector, analyzer=analyzer))

    repository.trigger_run(source_id=web_source.source_id)
    first = worker.run_once()
    assert first.succeeded == 1
    assert len(repository.list_tickets()) == 1

    connector.items = [_offer("Invest now for guaranteed returns")]
    run, _ = repository.trigger_run(source_id=web_source.source_id)
    before = utc_now()
    second = worker.run_once()

    assert second.processed == 1
    assert second.succeeded == 1
    stored_run = repository.require_run(run.run_id)
    assert stored_run.status is RunStatus.SUCCEEDED
    assert stored_run.counters.items_changed == 1
    assert stored_run.counters.analysis_completed == 1
    assert stored_run.counters.tickets_created == 1
    assert [item.status for item in repository.list_jobs()] == [JobStatus.SUCCEEDED] * 2
    assert len(analyzer.prompts) == 2

    tickets = repository.list_tickets()
    assert len(tickets) == 2
    newest = tickets[-1]
    assert repository.count_revisions(content_id=newest.content_id) == 2
    assert newest.risk_level is RiskLevel.HIGH
    assert newest.title == "Promises guaranteed returns"
    assert before + timedelta(hours=24) <= newest.due_at <= utc_now() + timedelta(hours=24)

    audit_types = [event.event_type for event in repository.list_audit_events()]
    assert audit_types.count("INGESTION_RUN_STARTED") == 2
    assert audit_types.count("TICKET_CREATED") == 2
    assert audit_types.count("INGESTION_RUN_COMPLETED") == 2

    source = repository.get_source(web_source.source_id)
    assert source is not None
    assert source.last_run_at is not None
    assert source.next_run_at == source.last_run_at + timedelta(minutes=60)


def test_orchestrator_exception_fails_run_and_job(repository, web_source) -> None:
    run, job = repository.trigger_run(source_id=web_source.source_id)
    worker = _worker(repository, _ExplodingStateMachine())

    summary = worker.run_once()

    assert summary.processed == 1
    assert summary.failed == 1
    stored = repository.require_run(run.run_id)
    assert stored.status is RunStatus.FAILED
    assert stored.last_error == "database went away"
    assert stored.completed_at is not None
    (finished,) = repository.list_jobs()
    assert finished.job_id == job.job_id
    assert finished.status is JobStatus.FAILED
    assert finished.error_summary == "database went away"


def test_orchestrator_exception_closes_open_step_records(repository, web_source) -> None:
    run, _ = repository.trigger_run(source_id=web_source.source_id)
    steps = [StepRecord(name=step.name) for step in PIPELINE_STEPS]
    steps[0].status = StepStatus.SUCCEEDED
    repository.save_steps(run_id=run.run_id, steps=steps)
    worker = _worker(repository, _ExplodingStateMachine())

    worker.run_once()

    steps = repository.require_run(run.run_id).steps
    assert steps[0].status is StepStatus.SUCCEEDED
    assert steps[1].status is StepStatus.FAILED
    assert all(step.status is StepStatus.SKIPPED for step in steps[2:])


def test_failed_run_marks_job_failed(repository, web_source, build_state_machine) -> None:
    repository.trigger_run(source_id=web_source.source_id)
    worker = _worker(repository, build_state_machine(connector=FakeConnector(failures=5)))

    summary = worker.run_once()

    assert summary.failed == 1
    (job,) = repository.list_jobs()
    assert job.status is JobStatus.FAILED
    assert job.error_summary == "connector failure #3"


def test_idle_queue_reports_idle_poll(repository, build_state_machine) -> None:
    summary = _worker(repository, build_state_machine()).run_once()

    assert summary.processed == 0
    assert summary.idle_polls == 1


def test_run_loop_drains_queue_then_stops_when_idle(
    repository,
    web_source,
    build_state_machine,
) -> None:
    for _ in range(3):
        repository.trigger_run(source_id=web_source.source_id)
    worker = _worker(repository, build_state_machine(connector=FakeConnector([_offer("a")])))

    summary = worker.run_loop(max_idle_polls=1)

    assert summary.processed == 3
    assert summary.succeeded == 3
    assert summary.idle_polls == 1
    assert repository.list_jobs(status=JobStatus.QUEUED) == []


def test_run_loop_respects_max_jobs(repository, web_source, build_state_machine) -> None:
    for _ in range(3):
        repository.trigger_run(source_id=web_source.source_id)
    worker = _worker(repository, build_state_machine())

    summary = worker.run_loop(max_jobs=2)

    assert summary.processed == 2
    assert len(repository.list_jobs(status=JobStatus.QUEUED)) == 1


def test_stop_request_prevents_claiming(repository, web_source, build_state_machine) -> None:
    repository.trigger_run(source_id=web_source.source_id)
    stop_flag = StopFlag()
    stop_flag.request(signal_name="SIGTERM")
    worker = _worker(repository, build_state_machine(), stop_flag=stop_flag)

    summary = worker.run_loop(max_idle_polls=None)

    assert summary.processed == 0
    assert len(repository.list_jobs(status=JobStatus.QUEUED)) == 1


def _age_job(repository, job_id: str, *, hours: int = 1) -> None:
    aged = (utc_now() - timedelta(hours=hours)).replace(tzinfo=None)
    with repository.engine.begin() as connection:
        connection.execute(
            text(
                "UPDATE pipeline_jobs SET claimed_at = :aged, updated_at = :aged "
                "WHERE job_id = :job_id",
            ),
            {"aged": aged.strftime("%Y-%m-%d %H:%M:%S.%f"), "job_id": job_id},
        )


def test_stale_claimed_job_is_requeued(repository, web_source, build_state_machine) -> None:
    repository.trigger_run(source_id=web_source.source_id)
    abandoned = repository.claim_next_job(worker_id="crashed-worker")
    assert abandoned is not None
    _age_job(repository, abandoned.job_id)
    worker = _worker(
        repository,
        build_state_machine(connector=FakeConnector([_offer("a")])),
        stale_job_seconds=60,
    )

    summary = worker.run_once()

    assert summary.requeued == 1
    assert summary.succeeded == 1
    (job,) = repository.list_jobs()
    assert job.status is JobStatus.SUCCEEDED
    assert job.attempt == 2
    assert job.worker_id == "worker-test"


def test_job_with_recent_heartbeat_is_not_requeued(repository, web_source) -> None:
    run, _ = repository.trigger_run(source_id=web_source.source_id)
    claimed = repository.claim_next_job(worker_id="slow-worker")
    assert claimed is not None
    _age_job(repository, claimed.job_id)

    assert repository.heartbeat_job(run_id=run.run_id) is True
    assert repository.requeue_stale_jobs(stale_after=timedelta(seconds=60)) == 0
    (job,) = repository.list_jobs()
    assert job.status is JobStatus.RUNNING
    assert job.worker_id == "slow-worker"


def test_step_transition_refreshes_job_heartbeat(
    repository,
    web_source,
    build_state_machine,
) -> None:
    repository.trigger_run(source_id=web_source.source_id)
    other = _worker(repository, build_state_machine(), stale_job_seconds=60)
    observed: list = []

    def _slow_fetch(ctx) -> None:
        (job,) = repository.list_jobs()
        _age_job(repository, job.job_id)

    def _normalize_while_other_worker_polls(ctx) -> None:
        observed.append(other.run_once())

    replacements = {
        StepName.FETCH_ITEMS: _slow_fetch,
        StepName.NORMALIZE_HASH: _normalize_while_other_worker_polls,
    }
    steps = [
        PipelineStep(step.name, replacements.get(step.name, step.execute))
        for step in PIPELINE_STEPS
    ]
    worker = _worker(repository, build_state_machine(steps=steps), stale_job_seconds=60)

    summary = worker.run_once()

    assert summary.succeeded == 1
    (during,) = observed
    assert during.requeued == 0
    assert during.processed == 0
    (job,) = repository.list_jobs()
    assert job.status is JobStatus.SUCCEEDED
    assert job.attempt == 1
    assert job.worker_id == "worker-test"
