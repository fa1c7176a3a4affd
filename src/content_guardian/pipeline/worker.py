"""Queue worker that feeds claimed `{source_id, run_id}` jobs to the state machine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from content_guardian.pipeline.models import JobStatus, RunStatus
from content_guardian.pipeline.repository import PipelineRepository
from content_guardian.pipeline.state_machine import PipelineStateMachine
from content_guardian.runtime import StopFlag

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    canceled: int = 0
    requeued: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.canceled += other.canceled
        self.requeued += other.requeued
        self.idle_polls += other.idle_polls


class IngestionWorker:
    """Consumes queued pipeline jobs one at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: PipelineRepository,
        state_machine: PipelineStateMachine,
        worker_id: str,
        poll_interval_seconds: float = 2.0,
        stale_job_seconds: int = 1800,
        stop_flag: StopFlag | None = None,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_job_seconds = stale_job_seconds
        self.stop_flag = stop_flag or StopFlag()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if self.stop_flag.requested:
            summary.idle_polls = 1
            return summary

        summary.requeued = self.repository.requeue_stale_jobs(
            stale_after=timedelta(seconds=self.stale_job_seconds),
        )
        if summary.requeued:
            logger.warning("Re-queued %d stale pipeline jobs", summary.requeued)

        job = self.repository.claim_next_job(worker_id=self.worker_id)
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        logger.info("Worker %s executing run %s", self.worker_id, job.run_id)
        try:
            result = self.state_machine.execute(source_id=job.source_id, run_id=job.run_id)
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or exc.__class__.__name__
            logger.exception("Run %s aborted by orchestrator error", job.run_id)
            self.repository.mark_run_failed(run_id=job.run_id, error=error)
            self.repository.finish_job(
                job_id=job.job_id,
                status=JobStatus.FAILED,
                error_summary=error,
            )
            summary.failed = 1
            return summary

        run_failed = result.status is RunStatus.FAILED
        self.repository.finish_job(
            job_id=job.job_id,
            status=JobStatus.FAILED if run_failed else JobStatus.SUCCEEDED,
            error_summary=result.last_error,
        )
        if result.status is RunStatus.SUCCEEDED:
            summary.succeeded = 1
        elif result.status is RunStatus.CANCELED:
            summary.canceled = 1
        else:
            summary.failed = 1
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> WorkerRunSummary:
        """Run until the queue stays idle for `max_idle_polls` polls or a stop is requested.

        `max_idle_polls=None` keeps polling until SIGINT/SIGTERM.
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self.stop_flag.signal_handlers():
            while not self.stop_flag.requested:
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    break

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                    self.stop_flag.sleep(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0
        return aggregate
