from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.auth import Caller
from core.observability import METRIC_SIGNATURE_DENIED, increment_metric
from core.signer_types import SignerContext
from models.parent_child_link import ParentChildLink, ParentChildLinkStatus


CHILD_SIGNER_MESSAGE = "Child signatures must be completed by the child account."


def _forbidden(detail: str = "Forbidden", *, reason: str) -> HTTPException:
    increment_metric(METRIC_SIGNATURE_DENIED, reason=reason)
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def has_active_parent_link(db: Session, *, parent_id: str, child_id: str) -> bool:
    link_id = db.scalar(
        select(ParentChildLink.id).where(
            ParentChildLink.parent_id == parent_id,
            ParentChildLink.child_id == child_id,
            ParentChildLink.status == ParentChildLinkStatus.ACTIVE,
        )
    )
    return link_id is not None


def ensure_can_record_signature(
    db: Session,
    caller: Caller,
    *,
    user_id: str,
    child_user_id: str | None,
    signer_context: SignerContext,
) -> None:
    if caller.is_admin:
        return

    if signer_context == SignerContext.CHILD:
        if user_id != caller.user_id:
            raise _forbidden(CHILD_SIGNER_MESSAGE, reason="child_signer_mismatch")
        if child_user_id and child_user_id != user_id:
            raise _forbidden(CHILD_SIGNER_MESSAGE, reason="child_signer_mismatch")

    if user_id != caller.user_id and not has_active_parent_link(db, parent_id=caller.user_id, child_id=user_id):
        raise _forbidden(reason="not_linked_to_signer")

    if signer_context == SignerContext.PARENT_GUARDIAN and child_user_id:
        if not has_active_parent_link(db, parent_id=caller.user_id, child_id=child_user_id):
            raise _forbidden(reason="not_linked_to_child")


def ensure_can_view_registration(
    db: Session,
    caller: Caller,
    *,
    registrant_id: str,
    is_child_registration: bool,
) -> None:
    if caller.is_admin or caller.user_id == registrant_id:
        return
    if is_child_registration and has_active_parent_link(db, parent_id=caller.user_id, child_id=registrant_id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
