from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from core.locks import EventLockTimeout, is_postgres_lock_timeout
from core.logging_utils import log_structured
from core.observability import unexpected_exception_metric


class FailureClass(StrEnum):
    DB_UNAVAILABLE = "db.unavailable"
    DB_CONSTRAINT_VIOLATION = "db.constraint_violation"
    LOCK_TIMEOUT = "lock.timeout"
    UNEXPECTED_EXCEPTION = "unexpected.exception"


@dataclass(frozen=True)
class FailurePolicy:
    failure_class: FailureClass
    http_status: int
    fail_closed: bool


def classify_failure(exc: Exception) -> FailureClass:
    if isinstance(exc, EventLockTimeout):
        return FailureClass.LOCK_TIMEOUT
    if isinstance(exc, IntegrityError):
        return FailureClass.DB_CONSTRAINT_VIOLATION
    if is_postgres_lock_timeout(exc):
        return FailureClass.LOCK_TIMEOUT
    if isinstance(exc, (OperationalError, DBAPIError)):
        return FailureClass.DB_UNAVAILABLE
    return FailureClass.UNEXPECTED_EXCEPTION


def failure_policy(exc: Exception) -> FailurePolicy:
    failure_class = classify_failure(exc)
    if failure_class in {FailureClass.DB_UNAVAILABLE, FailureClass.LOCK_TIMEOUT}:
        return FailurePolicy(failure_class=failure_class, http_status=503, fail_closed=True)
    if failure_class == FailureClass.DB_CONSTRAINT_VIOLATION:
        return FailurePolicy(failure_class=failure_class, http_status=409, fail_closed=True)
    return FailurePolicy(failure_class=failure_class, http_status=500, fail_closed=True)


def failure_event_type(operation: str) -> str:
    return f"{operation}.failed"


def record_operation_failure(
    *,
    operation: str,
    exc: Exception,
    resource_type: str | None = None,
    resource_id: str | None = None,
    extra_payload: dict[str, Any] | None = None,
) -> None:
    """Failure telemetry emitted after rollback boundaries. Never raises."""
    payload = dict(extra_payload or {})
    failure_class = classify_failure(exc)
    if failure_class == FailureClass.UNEXPECTED_EXCEPTION:
        unexpected_exception_metric(exc.__class__.__name__, request_id=payload.get("request_id"))
    log_structured(
        failure_event_type(operation),
        level=logging.WARNING,
        failure_class=failure_class.value,
        error_class=exc.__class__.__name__,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=payload.get("request_id"),
        event_id=payload.get("event_id"),
        path=payload.get("path"),
    )
