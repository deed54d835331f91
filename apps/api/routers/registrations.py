from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from core.auth import Caller, require_caller
from core.consent_progress import (
    ConsentEvaluation,
    evaluate_child_registration_consent,
    evaluate_participant_registration_consent,
    sync_child_registration_consent_status,
    sync_participant_registration_consent_status,
)
from core.deps import get_db
from core.failure_modes import record_operation_failure
from core.permissions import ensure_can_view_registration
from core.signer_types import signer_context_label
from schemas.registrations import (
    ConsentProgressOut,
    ConsentSyncOut,
    ConsentSyncRequest,
    OutstandingSignatureOut,
)

router = APIRouter(prefix="/events/{event_id}/registrations", tags=["registrations"])


def progress_out(evaluation: ConsentEvaluation, changed: bool | None = None) -> ConsentProgressOut:
    return ConsentProgressOut(
        registration_id=evaluation.registration_id,
        event_id=evaluation.event_id,
        registrant_id=evaluation.registrant_id,
        parent_id=evaluation.parent_id,
        is_child_registration=evaluation.is_child_registration,
        status=evaluation.status.value,
        consent_status=evaluation.consent_status,
        satisfied_template_ids=list(evaluation.state.satisfied_template_ids),
        outstanding=[
            OutstandingSignatureOut(
                template_id=template_id,
                signer_context=context.value,
                label=signer_context_label(context),
            )
            for template_id, context in evaluation.state.outstanding
        ],
        changed=changed,
    )


@router.post(
    "/consent/sync",
    response_model=ConsentSyncOut,
    description=(
        "Recompute consent progress for one registration and store it. "
        "Returns `updated: false` when no open registration exists."
    ),
)
def sync_registration_consent(
    event_id: str,
    payload: ConsentSyncRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller),
    request: Request = None,
):
    is_child_registration = bool(payload.child_user_id)
    registrant_id = payload.child_user_id or payload.user_id
    ensure_can_view_registration(
        db,
        caller,
        registrant_id=registrant_id,
        is_child_registration=is_child_registration,
    )

    try:
        if is_child_registration:
            result = sync_child_registration_consent_status(
                db,
                event_id=event_id,
                child_user_id=payload.child_user_id,
                parent_user_id=payload.parent_user_id,
            )
        else:
            result = sync_participant_registration_consent_status(db, event_id=event_id, user_id=payload.user_id)
        db.commit()
    except Exception as exc:
        db.rollback()
        record_operation_failure(
            operation="registration.consent_sync",
            exc=exc,
            resource_type="event",
            resource_id=event_id,
            extra_payload={
                "event_id": event_id,
                "request_id": getattr(getattr(request, "state", None), "request_id", None),
            },
        )
        raise

    if result is None:
        return ConsentSyncOut(updated=False)
    return ConsentSyncOut(updated=True, registration=progress_out(result.evaluation, changed=result.changed))


@router.get(
    "/consent",
    response_model=ConsentProgressOut,
    description="Read-only consent progress for one registration. Nothing is written.",
)
def get_registration_consent(
    event_id: str,
    child_user_id: str | None = Query(default=None),
    parent_user_id: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller),
):
    if bool(child_user_id) == bool(user_id):
        raise HTTPException(status_code=422, detail="exactly one of child_user_id or user_id is required")
    is_child_registration = bool(child_user_id)
    ensure_can_view_registration(
        db,
        caller,
        registrant_id=child_user_id or user_id,
        is_child_registration=is_child_registration,
    )

    if is_child_registration:
        evaluation = evaluate_child_registration_consent(
            db,
            event_id=event_id,
            child_user_id=child_user_id,
            parent_user_id=parent_user_id,
        )
    else:
        evaluation = evaluate_participant_registration_consent(db, event_id=event_id, user_id=user_id)
    if evaluation is None:
        raise HTTPException(status_code=404, detail="Registration not found")
    return progress_out(evaluation)
