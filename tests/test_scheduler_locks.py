from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta

import allure
import pytest
from sqlmodel import Session

from content_guardian.scheduler.locks import (
    ESCALATION_SCAN_LOCK,
    RETENTION_PURGE_LOCK,
    SchedulerLockManager,
)
from content_guardian.storage.common import to_db_datetime
from content_guardian.storage.sqlmodel_models import SchedulerLockRow

pytestmark = [
    allure.epic("Scheduler"),
    allure.feature("Scheduler Locks"),
]


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _manager(repository, holder_id: str, clock=None, ttl_seconds: int = 300):
    kwargs = {"clock": clock} if clock is not None else {}
    return SchedulerLockManager(
        repository.engine,
        holder_id=holder_id,
        ttl_seconds=ttl_seconds,
        **kwargs,
    )


def test_only_one_instance_holds_a_lock(repository) -> None:
    first = _manager(repository, "scheduler-a")
    second = _manager(repository, "scheduler-b")

    assert first.acquire(ESCALATION_SCAN_LOCK) is True
    assert second.acquire(ESCALATION_SCAN_LOCK) is False
    assert first.acquire(ESCALATION_SCAN_LOCK) is False


def test_locks_are_independent_by_name(repository) -> None:
    first = _manager(repository, "scheduler-a")
    second = _manager(repository, "scheduler-b")

    assert first.acquire(ESCALATION_SCAN_LOCK) is True
    assert second.acquire(RETENTION_PURGE_LOCK) is True


def test_only_the_holder_can_release(repository) -> None:
    first = _manager(repository, "scheduler-a")
    second = _manager(repository, "scheduler-b")
    first.acquire(ESCALATION_SCAN_LOCK)

    assert second.release(ESCALATION_SCAN_LOCK) is False
    assert second.acquire(ESCALATION_SCAN_LOCK) is False

    assert first.release(ESCALATION_SCAN_LOCK) is True
    assert second.acquire(ESCALATION_SCAN_LOCK) is True


def test_expired_lease_is_reclaimed(repository) -> None:
    clock = _Clock()
    crashed = _manager(repository, "scheduler-a", clock=clock, ttl_seconds=60)
    survivor = _manager(repository, "scheduler-b", clock=clock, ttl_seconds=60)
    assert crashed.acquire(ESCALATION_SCAN_LOCK) is True

    clock.advance(seconds=59)
    assert survivor.acquire(ESCALATION_SCAN_LOCK) is False

    clock.advance(seconds=1)
    assert survivor.acquire(ESCALATION_SCAN_LOCK) is True
    assert crashed.release(ESCALATION_SCAN_LOCK) is False


def test_hold_releases_on_exit_and_on_error(repository) -> None:
    first = _manager(repository, "scheduler-a")
    second = _manager(repository, "scheduler-b")

    with first.hold(ESCALATION_SCAN_LOCK) as acquired:
        assert acquired is True
        with second.hold(ESCALATION_SCAN_LOCK) as contended:
            assert contended is False
    assert second.acquire(ESCALATION_SCAN_LOCK) is True
    second.release(ESCALATION_SCAN_LOCK)

    with pytest.raises(RuntimeError), first.hold(ESCALATION_SCAN_LOCK):
        raise RuntimeError("job crashed")
    assert second.acquire(ESCALATION_SCAN_LOCK) is True


def test_renew_extends_only_the_holders_lease(repository) -> None:
    clock = _Clock()
    holder = _manager(repository, "scheduler-a", clock=clock, ttl_seconds=60)
    other = _manager(repository, "scheduler-b", clock=clock, ttl_seconds=60)
    assert holder.acquire(RETENTION_PURGE_LOCK) is True

    clock.advance(seconds=45)
    assert holder.renew(RETENTION_PURGE_LOCK) is True
    assert other.renew(RETENTION_PURGE_LOCK) is False

    clock.advance(seconds=45)
    assert other.acquire(RETENTION_PURGE_LOCK) is False
    clock.advance(seconds=15)
    assert other.acquire(RETENTION_PURGE_LOCK) is True
    assert holder.renew(RETENTION_PURGE_LOCK) is False


def test_lease_cannot_be_reclaimed_while_job_is_still_held(repository) -> None:
    clock = _Clock()
    holder = SchedulerLockManager(
        repository.engine,
        holder_id="scheduler-a",
        ttl_seconds=300,
        renew_interval_seconds=0.01,
        clock=clock,
    )
    other = _manager(repository, "scheduler-b", clock=clock)

    with holder.hold(RETENTION_PURGE_LOCK) as acquired:
        assert acquired is True
        clock.advance(seconds=301)
        _wait_for_lease_after(repository, RETENTION_PURGE_LOCK, clock.now)

        assert other.acquire(RETENTION_PURGE_LOCK) is False

    assert other.acquire(RETENTION_PURGE_LOCK) is True


def _wait_for_lease_after(repository, name: str, moment: datetime) -> None:
    deadline = time.monotonic() + 5.0
    while time.monotonic() < deadline:
        with Session(repository.engine) as session:
            lock = session.get(SchedulerLockRow, name)
            if lock is not None and lock.expires_at > to_db_datetime(moment):
                return
        time.sleep(0.01)
    pytest.fail(f"lease {name} was not renewed")
