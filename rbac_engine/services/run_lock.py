"""Single-flight guard for reconciliation runs.

Runs are excluded within a process by a thread lock and across processes by
the database: a session-level advisory lock on PostgreSQL, a lease row in
``reconciliation_locks`` elsewhere. A lease left behind by a crashed process
is taken over once it expires.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator
from uuid import uuid4

from sqlalchemy import delete, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rbac_engine.models.reconciliation_lock import ReconciliationLock

LOCK_NAME = "reconciliation"
ADVISORY_LOCK_KEY = 0x52424143

_process_lock = threading.Lock()
_logger = logging.getLogger("rbac_engine.services.run_lock")


class ReconciliationInProgressError(Exception):
    """Raised when another reconciliation run holds the lock."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def reconciliation_lock(session: Session, *, lease_seconds: int) -> Iterator[None]:
    """Hold the reconciliation lock for the duration of the block, or fail fast."""

    if not _process_lock.acquire(blocking=False):
        raise ReconciliationInProgressError("Another reconciliation run is in progress")
    try:
        bind = session.get_bind()
        if bind.dialect.name == "postgresql":
            with _advisory_lock(bind.engine):
                yield
        else:
            with _lease(session, lease_seconds):
                yield
    finally:
        _process_lock.release()


@contextmanager
def _advisory_lock(engine: Engine) -> Iterator[None]:
    with engine.connect() as base_conn:
        conn = base_conn.execution_options(isolation_level="AUTOCOMMIT")
        acquired = conn.scalar(text("SELECT pg_try_advisory_lock(:key)"), {"key": ADVISORY_LOCK_KEY})
        if not acquired:
            raise ReconciliationInProgressError("Another reconciliation run is in progress")
        try:
            yield
        finally:
            conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": ADVISORY_LOCK_KEY})


@contextmanager
def _lease(session: Session, lease_seconds: int) -> Iterator[None]:
    holder = uuid4().hex
    now = _utcnow()

    expired = session.execute(
        delete(ReconciliationLock)
        .where(ReconciliationLock.name == LOCK_NAME)
        .where(ReconciliationLock.expires_at <= now)
    )
    if expired.rowcount:
        _logger.warning("reconciliation_lease_expired", extra={"lock": LOCK_NAME})

    session.add(
        ReconciliationLock(
            name=LOCK_NAME,
            holder=holder,
            acquired_at=now,
            expires_at=now + timedelta(seconds=lease_seconds),
        )
    )
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        current = session.scalar(select(ReconciliationLock).where(ReconciliationLock.name == LOCK_NAME))
        until = current.expires_at.isoformat() if current is not None else "unknown"
        raise ReconciliationInProgressError(
            f"Another reconciliation run is in progress (lease held until {until})"
        ) from exc

    try:
        yield
    finally:
        session.rollback()
        session.execute(
            delete(ReconciliationLock)
            .where(ReconciliationLock.name == LOCK_NAME)
            .where(ReconciliationLock.holder == holder)
        )
        session.commit()
