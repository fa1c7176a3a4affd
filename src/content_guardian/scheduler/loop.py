"""Timer loop running the recurring jobs, each under its own scheduler lock."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from content_guardian.pipeline.repository import PipelineRepository
from content_guardian.runtime import StopFlag
from content_guardian.scheduler.jobs import (
    run_escalation_sweep,
    run_periodic_ingestion,
    run_retention_purge,
)
from content_guardian.scheduler.locks import (
    ESCALATION_SCAN_LOCK,
    INGESTION_SCAN_LOCK,
    RETENTION_PURGE_LOCK,
    SchedulerLockManager,
)
from content_guardian.storage.common import utc_now

logger = logging.getLogger(__name__)

JobFunction = Callable[[PipelineRepository, datetime], Any]


class JobOutcome(str, Enum):
    RAN = "ran"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ScheduledJob:
    lock_name: str
    run: JobFunction


@dataclass(slots=True)
class JobReport:
    lock_name: str
    outcome: JobOutcome
    result: Any = None
    error: str | None = None


@dataclass(slots=True)
class SchedulerTickResult:
    started_at: datetime
    reports: list[JobReport] = field(default_factory=list)

    def outcome_of(self, lock_name: str) -> JobOutcome | None:
        for report in self.reports:
            if report.lock_name == lock_name:
                return report.outcome
        return None


DEFAULT_JOBS: tuple[ScheduledJob, ...] = (
    ScheduledJob(
        ESCALATION_SCAN_LOCK,
        lambda repository, now: run_escalation_sweep(repository, now=now),
    ),
    ScheduledJob(
        INGESTION_SCAN_LOCK,
        lambda repository, now: run_periodic_ingestion(repository, now=now),
    ),
    ScheduledJob(
        RETENTION_PURGE_LOCK,
        lambda repository, now: run_retention_purge(repository, now=now),
    ),
)


class SchedulerLoop:
    """Run every scheduled job once per tick; one job failing never stops the others."""

    def __init__(  # noqa: PLR0913
        self,
        repository: PipelineRepository,
        lock_manager: SchedulerLockManager,
        *,
        interval_seconds: float = 60.0,
        jobs: Sequence[ScheduledJob] = DEFAULT_JOBS,
        clock: Callable[[], datetime] = utc_now,
        stop_flag: StopFlag | None = None,
    ) -> None:
        self.repository = repository
        self.lock_manager = lock_manager
        self.interval_seconds = interval_seconds
        self.jobs = tuple(jobs)
        self._clock = clock
        self.stop_flag = stop_flag or StopFlag()

    def tick(self) -> SchedulerTickResult:
        tick = SchedulerTickResult(started_at=self._clock())
        for job in self.jobs:
            tick.reports.append(self._run_job(job))
        return tick

    def run_forever(self, *, max_ticks: int | None = None) -> int:
        """Tick every `interval_seconds` until stopped; return the number of ticks."""

        ticks = 0
        logger.info(
            "Scheduler %s started (interval: %ss)",
            self.lock_manager.holder_id,
            self.interval_seconds,
        )
        with self.stop_flag.signal_handlers():
            while not self.stop_flag.requested:
                self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self.stop_flag.sleep(self.interval_seconds)
        logger.info("Scheduler %s stopped after %d ticks", self.lock_manager.holder_id, ticks)
        return ticks

    def stop(self) -> None:
        self.stop_flag.request()

    def _run_job(self, job: ScheduledJob) -> JobReport:
        with self.lock_manager.hold(job.lock_name) as acquired:
            if not acquired:
                logger.debug("Job %s skipped, lock held elsewhere", job.lock_name)
                return JobReport(lock_name=job.lock_name, outcome=JobOutcome.SKIPPED)
            try:
                result = job.run(self.repository, self._clock())
            except Exception as exc:  # noqa: BLE001
                logger.exception("Scheduled job %s failed", job.lock_name)
                return JobReport(
                    lock_name=job.lock_name,
                    outcome=JobOutcome.FAILED,
                    error=str(exc) or exc.__class__.__name__,
                )
        return JobReport(lock_name=job.lock_name, outcome=JobOutcome.RAN, result=result)
