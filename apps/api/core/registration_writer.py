from datetime import datetime, timezone

from sqlalchemy.orm import Session

from core.logging_utils import log_structured
from core.observability import METRIC_CONSENT_TRANSITION, increment_metric
from models.event_registration import EventRegistration, RegistrationStatus


def _status_value(status) -> str | None:
    if status is None:
        return None
    return status.value if hasattr(status, "value") else str(status)


def apply_consent_transition(
    db: Session,
    registration: EventRegistration,
    *,
    status: RegistrationStatus,
    consent_status: str,
) -> bool:
    """Persist a computed status pair on the registration.

    Both fields are assigned before a single flush. Returns False and writes
    nothing when the stored pair already matches.
    """
    previous_status = _status_value(registration.status)
    if previous_status == status.value and registration.consent_status == consent_status:
        return False

    previous_consent_status = registration.consent_status
    registration.status = status
    registration.consent_status = consent_status
    registration.updated_at = datetime.now(timezone.utc)
    db.flush()

    increment_metric(
        METRIC_CONSENT_TRANSITION,
        reason=f"{previous_consent_status or 'none'}->{consent_status}",
    )
    log_structured(
        "registration.consent_transition",
        registration_id=registration.id,
        event_id=registration.event_id,
        status=status.value,
        consent_status=consent_status,
        reason=f"from {previous_status}/{previous_consent_status}",
    )
    return True
