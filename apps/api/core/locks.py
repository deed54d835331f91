"""Event-scoped advisory locks.

Every write path that touches an event's registration aggregates (roster
counts, required templates, consent state) must call ``acquire_event_lock``
inside its transaction before reading that state. The lock is released when
the session's outermost transaction ends, on commit or rollback.

Lock ids are the first 64 bits of SHA-256 over the event id. Two distinct
events can collide on the same id and would then serialize against each
other; that is improbable and harmless beyond the extra waiting.

Known limitation: taking the same event lock twice on one session is not
tracked per nesting level. PostgreSQL stacks the lock until the outer
transaction ends and the local fallback treats the second call as already
held, so callers should not rely on a nested transaction to release it early.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import Any, Callable, Iterable, TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, SessionTransaction

from core.config import get_settings
from core.logging_utils import log_structured
from core.observability import (
    METRIC_EVENT_LOCK_ACQUIRED,
    METRIC_EVENT_LOCK_TIMEOUT,
    increment_metric,
)

T = TypeVar("T")

_HELD_LOCKS_KEY = "event_locks.held"
_LISTENER_KEY = "event_locks.listener"
PG_LOCK_NOT_AVAILABLE = "55P03"


class EventLockTimeout(RuntimeError):
    def __init__(self, event_id: str, timeout_seconds: float) -> None:
        super().__init__(f"timed out after {timeout_seconds:g}s waiting for event lock {event_id}")
        self.event_id = event_id
        self.timeout_seconds = timeout_seconds


def advisory_lock_id(value: str) -> int:
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class _LocalLockRegistry:
    """Per-process stand-in for pg_advisory_xact_lock on dialects without it.

    An entry lives only while some session holds or waits for its lock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}
        self._users: dict[int, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, lock_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(lock_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[lock_id] = lock
            self._users[lock_id] = self._users.get(lock_id, 0) + 1
            return lock

    def _checkin(self, lock_id: int) -> None:
        with self._guard:
            remaining = self._users.get(lock_id, 0) - 1
            if remaining > 0:
                self._users[lock_id] = remaining
                return
            self._users.pop(lock_id, None)
            self._locks.pop(lock_id, None)

    def acquire(self, lock_id: int, timeout_seconds: float) -> bool:
        lock = self._checkout(lock_id)
        if lock.acquire(timeout=timeout_seconds):
            return True
        self._checkin(lock_id)
        return False

    def release(self, lock_id: int) -> None:
        with self._guard:
            lock = self._locks[lock_id]
        lock.release()
        self._checkin(lock_id)


LOCAL_LOCKS = _LocalLockRegistry()


def _release_local_locks(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is not None:
        return
    held: set[int] = session.info.pop(_HELD_LOCKS_KEY, set())
    for lock_id in held:
        LOCAL_LOCKS.release(lock_id)


def _acquire_local(db: Session, event_id: str, lock_id: int, timeout_seconds: float) -> None:
    # Begin the session transaction so its end reliably releases the lock.
    db.connection()
    held: set[int] = db.info.setdefault(_HELD_LOCKS_KEY, set())
    if lock_id in held:
        return
    if not db.info.get(_LISTENER_KEY):
        event.listen(db, "after_transaction_end", _release_local_locks)
        db.info[_LISTENER_KEY] = True
    if not LOCAL_LOCKS.acquire(lock_id, timeout_seconds):
        raise EventLockTimeout(event_id, timeout_seconds)
    held.add(lock_id)


def _acquire_postgres(db: Session, lock_id: int, timeout_seconds: float) -> None:
    timeout_ms = int(timeout_seconds * 1000)
    db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
    db.execute(text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": lock_id})


def is_postgres_lock_timeout(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    if getattr(exc.orig, "sqlstate", None) == PG_LOCK_NOT_AVAILABLE:
        return True
    lowered = str(exc).lower()
    return "lock timeout" in lowered or "lock_timeout" in lowered


def acquire_event_lock(db: Session, event_id: str) -> int:
    timeout_seconds = get_settings().event_lock_timeout_seconds
    lock_id = advisory_lock_id(event_id)
    started = time.perf_counter()
    try:
        if db.get_bind().dialect.name == "postgresql":
            _acquire_postgres(db, lock_id, timeout_seconds)
        else:
            _acquire_local(db, event_id, lock_id, timeout_seconds)
    except EventLockTimeout:
        increment_metric(METRIC_EVENT_LOCK_TIMEOUT, reason="local_lock_timeout")
        raise
    except DBAPIError as exc:
        if is_postgres_lock_timeout(exc):
            increment_metric(METRIC_EVENT_LOCK_TIMEOUT, reason="pg_lock_timeout")
            log_structured(
                "registration.event_lock_timeout",
                level=logging.WARNING,
                event_id=event_id,
                lock_id=lock_id,
            )
        raise
    waited_ms = (time.perf_counter() - started) * 1000.0
    increment_metric(METRIC_EVENT_LOCK_ACQUIRED)
    log_structured(
        "registration.event_lock_acquired",
        event_id=event_id,
        lock_id=lock_id,
        wait_ms=f"{waited_ms:.2f}",
    )
    return lock_id


def acquire_event_locks(db: Session, event_ids: Iterable[str | None]) -> list[str]:
    """Lock several events in sorted order; returns the ids locked."""
    ordered = sorted({event_id for event_id in event_ids if event_id})
    for event_id in ordered:
        acquire_event_lock(db, event_id)
    return ordered


def with_event_lock(db: Session, event_id: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    acquire_event_lock(db, event_id)
    return fn(*args, **kwargs)
