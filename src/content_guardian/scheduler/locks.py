"""Database-backed TTL leases that keep scheduler jobs single-flight across instances."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, delete

from content_guardian.storage.common import to_db_datetime, utc_now
from content_guardian.storage.sqlmodel_models import SchedulerLockRow

logger = logging.getLogger(__name__)

INGESTION_SCAN_LOCK = "ingestion-scan"
ESCALATION_SCAN_LOCK = "escalation-scan"
RETENTION_PURGE_LOCK = "retention-purge"


class SchedulerLockManager:
    """Non-blocking named locks with insert-or-fail semantics.

    A lease expires after `ttl_seconds`; the next `acquire` reclaims it, so a
    crashed holder never blocks other instances for longer than one TTL. While
    a job runs inside `hold`, a background thread renews the lease every
    `renew_interval_seconds` (a third of the TTL by default).
    """

    def __init__(
        self,
        engine: Engine,
        *,
        holder_id: str,
        ttl_seconds: int = 300,
        renew_interval_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.engine = engine
        self.holder_id = holder_id
        self.ttl_seconds = ttl_seconds
        self.renew_interval_seconds = (
            renew_interval_seconds if renew_interval_seconds is not None else ttl_seconds / 3
        )
        self._clock = clock

    def acquire(self, name: str) -> bool:
        now = self._clock()
        with Session(self.engine) as session:
            session.exec(
                delete(SchedulerLockRow).where(
                    col(SchedulerLockRow.lock_name) == name,
                    col(SchedulerLockRow.expires_at) <= to_db_datetime(now),
                ),
            )
            session.add(
                SchedulerLockRow(
                    lock_name=name,
                    holder_id=self.holder_id,
                    acquired_at=to_db_datetime(now),
                    expires_at=to_db_datetime(now + timedelta(seconds=self.ttl_seconds)),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.debug("Lock %s is held by another instance", name)
                return False
        logger.debug("Lock %s acquired by %s", name, self.holder_id)
        return True

    def release(self, name: str) -> bool:
        """Drop the lease if this instance holds it."""

        with Session(self.engine) as session:
            result = session.exec(
                delete(SchedulerLockRow).where(
                    col(SchedulerLockRow.lock_name) == name,
                    col(SchedulerLockRow.holder_id) == self.holder_id,
                ),
            )
            session.commit()
            return bool(result.rowcount)

    def renew(self, name: str) -> bool:
        """Extend the lease by one TTL; False when this instance no longer holds it."""

        now = self._clock()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(SchedulerLockRow)
                .where(
                    col(SchedulerLockRow.lock_name) == name,
                    col(SchedulerLockRow.holder_id) == self.holder_id,
                )
                .values(expires_at=to_db_datetime(now + timedelta(seconds=self.ttl_seconds))),
            )
            session.commit()
            return result.rowcount == 1

    @contextmanager
    def hold(self, name: str) -> Iterator[bool]:
        """Yield whether `name` was acquired; renew it while held and release it on exit."""

        acquired = self.acquire(name)
        if not acquired:
            yield False
            return

        stop = threading.Event()
        keeper = threading.Thread(
            target=self._keep_lease,
            args=(name, stop),
            daemon=True,
            name=f"lease-{name}",
        )
        keeper.start()
        try:
            yield True
        finally:
            stop.set()
            keeper.join(timeout=max(1.0, self.renew_interval_seconds))
            self.release(name)

    def _keep_lease(self, name: str, stop: threading.Event) -> None:
        while not stop.wait(self.renew_interval_seconds):
            if not self.renew(name):
                logger.warning("Lock %s lost by %s while held", name, self.holder_id)
                return
