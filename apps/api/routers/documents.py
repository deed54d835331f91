from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.auth import Caller, require_caller
from core.consent_progress import (
    ConsentSyncResult,
    open_registration_event_ids,
    sync_all_child_registrations,
    sync_all_participant_registrations,
    sync_child_registration_consent_status,
    sync_participant_registration_consent_status,
)
from core.deps import get_db
from core.failure_modes import record_operation_failure
from core.locks import acquire_event_locks
from core.logging_utils import log_structured
from core.observability import METRIC_SIGNATURE_RECORDED, increment_metric
from core.permissions import ensure_can_record_signature
from core.signer_types import SignerContext, normalize_signer_context
from models.event import Event
from models.event_registration import RegistrantType
from models.signed_document import SignedDocument, SignedDocumentStatus
from models.template_document import TemplateDocument
from routers.registrations import progress_out
from schemas.documents import RecordSignatureIn, RecordSignatureOut, SignedDocumentOut

router = APIRouter(prefix="/documents", tags=["documents"])


def _normalize_text(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def _normalize_email(value: str | None) -> str | None:
    normalized = _normalize_text(value)
    return normalized.lower() if normalized else None


def resolve_signer_context(
    provided_signer_context: str | None,
    *,
    user_id: str,
    child_user_id: str | None,
) -> SignerContext:
    if _normalize_text(provided_signer_context):
        return normalize_signer_context(provided_signer_context)
    if child_user_id and user_id == child_user_id:
        return SignerContext.CHILD
    if child_user_id:
        return SignerContext.PARENT_GUARDIAN
    return SignerContext.PARTICIPANT


def _resolve_ip_address(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()
    return request.client.host if request.client else None


def _find_existing_signature(
    db: Session,
    *,
    template_id: str,
    user_id: str,
    signer_context: SignerContext,
    host_id: str | None,
    event_id: str | None,
) -> SignedDocument | None:
    query = select(SignedDocument).where(
        SignedDocument.template_id == template_id,
        SignedDocument.user_id == user_id,
        SignedDocument.signer_role == signer_context.value,
        func.upper(SignedDocument.status) == SignedDocumentStatus.SIGNED.value,
    )
    query = query.where(SignedDocument.host_id.is_(None) if host_id is None else SignedDocument.host_id == host_id)
    if event_id:
        query = query.where(SignedDocument.event_id == event_id)
    return db.scalar(query.order_by(SignedDocument.created_at.desc()).limit(1))


def _events_to_lock(
    db: Session,
    *,
    template: TemplateDocument,
    user_id: str,
    event_id: str | None,
    scoped_child_user_id: str | None,
) -> set[str]:
    events = {event_id} if event_id else set()
    if template.sign_once:
        if scoped_child_user_id:
            events.update(
                open_registration_event_ids(
                    db,
                    registrant_id=scoped_child_user_id,
                    registrant_type=RegistrantType.CHILD,
                )
            )
        else:
            events.update(open_registration_event_ids(db, registrant_id=user_id, registrant_type=RegistrantType.SELF))
    return events


def _sync_after_signature(
    db: Session,
    *,
    template: TemplateDocument,
    user_id: str,
    event_id: str | None,
    scoped_child_user_id: str | None,
) -> list[ConsentSyncResult]:
    # A sign-once signature can unblock registrations in every event.
    if scoped_child_user_id and template.sign_once:
        return sync_all_child_registrations(db, child_user_id=scoped_child_user_id)
    if scoped_child_user_id:
        result = sync_child_registration_consent_status(db, event_id=event_id, child_user_id=scoped_child_user_id)
        return [result] if result is not None else []
    if template.sign_once:
        return sync_all_participant_registrations(db, user_id=user_id)
    result = sync_participant_registration_consent_status(db, event_id=event_id, user_id=user_id)
    return [result] if result is not None else []


@router.post(
    "/record-signature",
    response_model=RecordSignatureOut,
    description=(
        "Record a completed signature and recompute consent progress for the affected registrations. "
        "An identical existing signature is reused."
    ),
)
def record_signature(
    payload: RecordSignatureIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller),
    request: Request = None,
):
    user_id = _normalize_text(payload.user_id) or caller.user_id
    event_id = _normalize_text(payload.event_id)
    child_user_id = _normalize_text(payload.child_user_id)
    signer_context = resolve_signer_context(payload.signer_context, user_id=user_id, child_user_id=child_user_id)

    ensure_can_record_signature(
        db,
        caller,
        user_id=user_id,
        child_user_id=child_user_id,
        signer_context=signer_context,
    )

    template = db.get(TemplateDocument, payload.template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    event = db.get(Event, event_id) if event_id else None
    if event_id and event is None:
        raise HTTPException(status_code=404, detail="Event not found")

    scoped_child_user_id = child_user_id or (user_id if signer_context == SignerContext.CHILD else None)
    request_id = getattr(getattr(request, "state", None), "request_id", None)

    try:
        # Locks come before the replay lookup and the insert.
        acquire_event_locks(
            db,
            _events_to_lock(
                db,
                template=template,
                user_id=user_id,
                event_id=event_id,
                scoped_child_user_id=scoped_child_user_id,
            ),
        )
        signed = _find_existing_signature(
            db,
            template_id=template.id,
            user_id=user_id,
            signer_context=signer_context,
            host_id=scoped_child_user_id,
            event_id=event_id,
        )
        replayed = signed is not None
        if signed is None:
            signed = SignedDocument(
                template_id=template.id,
                user_id=user_id,
                signer_role=signer_context.value,
                host_id=scoped_child_user_id,
                event_id=event_id,
                organization_id=event.organization_id if event is not None else None,
                status=SignedDocumentStatus.SIGNED.value,
                signed_document_id=payload.document_id,
                document_name="Text Waiver" if (payload.type or "").upper() == "TEXT" else "Signed Document",
                signer_email=_normalize_email(payload.signer_email),
                ip_address=_resolve_ip_address(request),
                request_id=request_id,
                signed_at=datetime.now(timezone.utc),
            )
            db.add(signed)
            db.flush()

        results = _sync_after_signature(
            db,
            template=template,
            user_id=user_id,
            event_id=event_id,
            scoped_child_user_id=scoped_child_user_id,
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        record_operation_failure(
            operation="documents.record_signature",
            exc=exc,
            resource_type="template",
            resource_id=payload.template_id,
            extra_payload={"event_id": event_id, "request_id": request_id, "path": "/documents/record-signature"},
        )
        raise

    if not replayed:
        increment_metric(METRIC_SIGNATURE_RECORDED, request_id=request_id, reason=signer_context.value)
    log_structured(
        "documents.signature_recorded",
        request_id=request_id,
        template_id=template.id,
        event_id=event_id,
        signer_context=signer_context.value,
        reason="replayed" if replayed else "created",
    )
    return RecordSignatureOut(
        replayed=replayed,
        signed_document=SignedDocumentOut.model_validate(signed),
        registrations=[progress_out(result.evaluation, changed=result.changed) for result in results],
    )
