"""Consent progress for event registrations.

A registration's status is recomputed from scratch on every sync: the event's
required templates, the signatures on file and the registrant type fully
determine it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from core.locks import acquire_event_lock
from core.logging_utils import log_structured
from core.observability import METRIC_CONSENT_SYNC_SKIPPED, increment_metric
from core.registration_writer import apply_consent_transition
from core.signer_types import SignerContext, applicable_contexts, normalize_signer_context
from models.event import Event
from models.event_registration import (
    CONSENT_SYNC_STATUSES,
    EventRegistration,
    RegistrantType,
    RegistrationStatus,
)
from models.signed_document import SignedDocument, SignedDocumentStatus
from models.template_document import TemplateDocument

CONSENT_SENT = "sent"
CONSENT_PARENT_SIGNED = "parentSigned"
CONSENT_CHILD_SIGNED = "childSigned"
CONSENT_COMPLETED = "completed"


@dataclass(frozen=True)
class TemplateRequirement:
    template_id: str
    sign_once: bool
    contexts: frozenset[SignerContext]


@dataclass(frozen=True)
class ConsentState:
    status: RegistrationStatus
    consent_status: str
    satisfied_template_ids: tuple[str, ...] = ()
    outstanding: tuple[tuple[str, SignerContext], ...] = ()


@dataclass(frozen=True)
class ConsentEvaluation:
    registration_id: str
    event_id: str
    registrant_id: str
    parent_id: str | None
    is_child_registration: bool
    state: ConsentState
    requirements: tuple[TemplateRequirement, ...] = field(default=())

    @property
    def status(self) -> RegistrationStatus:
        return self.state.status

    @property
    def consent_status(self) -> str:
        return self.state.consent_status


@dataclass(frozen=True)
class ConsentSyncResult:
    evaluation: ConsentEvaluation
    changed: bool


def _normalize_text(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def load_template_requirements(
    db: Session,
    template_ids: list[str],
    *,
    is_child_registration: bool,
) -> list[TemplateRequirement]:
    """Resolve required template ids to the signatures this registration needs.

    Ids with no template row are dropped. Templates whose signer type does
    not apply to this kind of registration are dropped too.
    """
    if not template_ids:
        return []
    rows = db.scalars(select(TemplateDocument).where(TemplateDocument.id.in_(template_ids))).all()
    by_id = {row.id: row for row in rows}
    requirements: list[TemplateRequirement] = []
    for template_id in template_ids:
        template = by_id.get(template_id)
        if template is None:
            continue
        contexts = applicable_contexts(template.signer_type, is_child_registration)
        if not contexts:
            continue
        requirements.append(
            TemplateRequirement(
                template_id=template.id,
                sign_once=bool(template.sign_once),
                contexts=contexts,
            )
        )
    return requirements


def _expected_signers(registrant_id: str, parent_id: str | None, is_child_registration: bool) -> dict[SignerContext, str]:
    if is_child_registration:
        return {
            SignerContext.PARENT_GUARDIAN: parent_id or "",
            SignerContext.CHILD: registrant_id,
        }
    return {SignerContext.PARTICIPANT: registrant_id}


def find_signed_pairs(
    db: Session,
    *,
    event_id: str,
    registrant_id: str,
    parent_id: str | None,
    is_child_registration: bool,
    requirements: list[TemplateRequirement],
) -> set[tuple[str, SignerContext]]:
    """Return (template_id, signer_context) pairs that have a SIGNED document on file."""
    sign_once_ids = [req.template_id for req in requirements if req.sign_once]
    event_scoped_ids = [req.template_id for req in requirements if not req.sign_once]
    if not sign_once_ids and not event_scoped_ids:
        return set()

    scope_filters = []
    if sign_once_ids:
        scope_filters.append(SignedDocument.template_id.in_(sign_once_ids))
    if event_scoped_ids:
        scope_filters.append(
            and_(
                SignedDocument.template_id.in_(event_scoped_ids),
                SignedDocument.event_id == event_id,
            )
        )

    expected = _expected_signers(registrant_id, parent_id, is_child_registration)
    if is_child_registration:
        signer_filter = or_(
            and_(
                SignedDocument.user_id == expected[SignerContext.PARENT_GUARDIAN],
                SignedDocument.signer_role == SignerContext.PARENT_GUARDIAN.value,
                SignedDocument.host_id == registrant_id,
            ),
            and_(
                SignedDocument.user_id == registrant_id,
                SignedDocument.signer_role == SignerContext.CHILD.value,
                SignedDocument.host_id == registrant_id,
            ),
        )
    else:
        signer_filter = and_(
            SignedDocument.user_id == registrant_id,
            SignedDocument.signer_role == SignerContext.PARTICIPANT.value,
        )

    # Rows written before status canonicalization may be lower case.
    rows = db.execute(
        select(SignedDocument.template_id, SignedDocument.user_id, SignedDocument.signer_role).where(
            func.upper(SignedDocument.status) == SignedDocumentStatus.SIGNED.value,
            signer_filter,
            or_(*scope_filters),
        )
    ).all()

    signed: set[tuple[str, SignerContext]] = set()
    for template_id, user_id, signer_role in rows:
        context = normalize_signer_context(signer_role)
        if expected.get(context) != user_id:
            continue
        signed.add((template_id, context))
    return signed


def compute_consent_state(
    requirements: list[TemplateRequirement],
    signed_pairs: set[tuple[str, SignerContext]],
    *,
    is_child_registration: bool,
) -> ConsentState:
    outstanding: list[tuple[str, SignerContext]] = []
    satisfied: list[str] = []
    for req in requirements:
        missing = [
            (req.template_id, context)
            for context in sorted(req.contexts)
            if (req.template_id, context) not in signed_pairs
        ]
        if missing:
            outstanding.extend(missing)
        else:
            satisfied.append(req.template_id)

    if not outstanding:
        return ConsentState(
            status=RegistrationStatus.ACTIVE,
            consent_status=CONSENT_COMPLETED,
            satisfied_template_ids=tuple(satisfied),
        )

    consent_status = CONSENT_SENT
    if is_child_registration:
        parent_required = any(SignerContext.PARENT_GUARDIAN in req.contexts for req in requirements)
        child_required = any(SignerContext.CHILD in req.contexts for req in requirements)
        parent_outstanding = any(context == SignerContext.PARENT_GUARDIAN for _, context in outstanding)
        child_outstanding = any(context == SignerContext.CHILD for _, context in outstanding)
        if parent_required and not parent_outstanding and child_outstanding:
            consent_status = CONSENT_PARENT_SIGNED
        elif child_required and not child_outstanding and parent_outstanding:
            consent_status = CONSENT_CHILD_SIGNED

    return ConsentState(
        status=RegistrationStatus.PENDINGCONSENT,
        consent_status=consent_status,
        satisfied_template_ids=tuple(satisfied),
        outstanding=tuple(outstanding),
    )


def evaluate_registration(db: Session, registration: EventRegistration, event: Event) -> ConsentEvaluation:
    is_child_registration = registration.registrant_type == RegistrantType.CHILD
    requirements = load_template_requirements(
        db,
        event.normalized_required_template_ids(),
        is_child_registration=is_child_registration,
    )
    signed_pairs = find_signed_pairs(
        db,
        event_id=event.id,
        registrant_id=registration.registrant_id,
        parent_id=registration.parent_id,
        is_child_registration=is_child_registration,
        requirements=requirements,
    )
    state = compute_consent_state(requirements, signed_pairs, is_child_registration=is_child_registration)
    return ConsentEvaluation(
        registration_id=registration.id,
        event_id=event.id,
        registrant_id=registration.registrant_id,
        parent_id=registration.parent_id,
        is_child_registration=is_child_registration,
        state=state,
        requirements=tuple(requirements),
    )


def find_child_registration(
    db: Session,
    *,
    event_id: str,
    child_user_id: str,
    parent_user_id: str | None = None,
) -> EventRegistration | None:
    query = select(EventRegistration).where(
        EventRegistration.event_id == event_id,
        EventRegistration.registrant_id == child_user_id,
        EventRegistration.registrant_type == RegistrantType.CHILD,
        EventRegistration.status.in_(CONSENT_SYNC_STATUSES),
    )
    if parent_user_id:
        query = query.where(EventRegistration.parent_id == parent_user_id)
    registration = db.scalar(query.order_by(EventRegistration.updated_at.desc()).limit(1))
    if registration is None or not registration.parent_id:
        return None
    return registration


def find_participant_registration(db: Session, *, event_id: str, user_id: str) -> EventRegistration | None:
    return db.scalar(
        select(EventRegistration)
        .where(
            EventRegistration.event_id == event_id,
            EventRegistration.registrant_id == user_id,
            EventRegistration.registrant_type == RegistrantType.SELF,
            EventRegistration.status.in_(CONSENT_SYNC_STATUSES),
        )
        .order_by(EventRegistration.updated_at.desc())
        .limit(1)
    )


def _skip(reason: str, event_id: str | None) -> None:
    increment_metric(METRIC_CONSENT_SYNC_SKIPPED, reason=reason)
    log_structured("registration.consent_sync_skipped", level=logging.DEBUG, event_id=event_id, reason=reason)


def _evaluate(db: Session, registration: EventRegistration | None, event_id: str) -> ConsentEvaluation | None:
    if registration is None:
        _skip("registration_not_found", event_id)
        return None
    event = db.get(Event, event_id)
    if event is None:
        _skip("event_not_found", event_id)
        return None
    return evaluate_registration(db, registration, event)


def evaluate_child_registration_consent(
    db: Session,
    *,
    event_id: str | None,
    child_user_id: str | None,
    parent_user_id: str | None = None,
) -> ConsentEvaluation | None:
    event_id = _normalize_text(event_id)
    child_user_id = _normalize_text(child_user_id)
    if not event_id or not child_user_id:
        return None
    registration = find_child_registration(
        db,
        event_id=event_id,
        child_user_id=child_user_id,
        parent_user_id=_normalize_text(parent_user_id),
    )
    return _evaluate(db, registration, event_id)


def evaluate_participant_registration_consent(
    db: Session,
    *,
    event_id: str | None,
    user_id: str | None,
) -> ConsentEvaluation | None:
    event_id = _normalize_text(event_id)
    user_id = _normalize_text(user_id)
    if not event_id or not user_id:
        return None
    registration = find_participant_registration(db, event_id=event_id, user_id=user_id)
    return _evaluate(db, registration, event_id)


def _persist(db: Session, evaluation: ConsentEvaluation | None) -> ConsentSyncResult | None:
    if evaluation is None:
        return None
    registration = db.get(EventRegistration, evaluation.registration_id)
    changed = apply_consent_transition(
        db,
        registration,
        status=evaluation.status,
        consent_status=evaluation.consent_status,
    )
    return ConsentSyncResult(evaluation=evaluation, changed=changed)


def sync_child_registration_consent_status(
    db: Session,
    *,
    event_id: str | None,
    child_user_id: str | None,
    parent_user_id: str | None = None,
) -> ConsentSyncResult | None:
    """Recompute and store consent progress for a child's event registration.

    Takes the event lock for the rest of the caller's transaction. Returns
    None when there is no matching registration; the caller commits.
    """
    event_id = _normalize_text(event_id)
    if not event_id or not _normalize_text(child_user_id):
        return None
    acquire_event_lock(db, event_id)
    evaluation = evaluate_child_registration_consent(
        db,
        event_id=event_id,
        child_user_id=child_user_id,
        parent_user_id=parent_user_id,
    )
    return _persist(db, evaluation)


def sync_participant_registration_consent_status(
    db: Session,
    *,
    event_id: str | None,
    user_id: str | None,
) -> ConsentSyncResult | None:
    event_id = _normalize_text(event_id)
    if not event_id or not _normalize_text(user_id):
        return None
    acquire_event_lock(db, event_id)
    evaluation = evaluate_participant_registration_consent(db, event_id=event_id, user_id=user_id)
    return _persist(db, evaluation)


def sync_all_child_registrations(db: Session, *, child_user_id: str) -> list[ConsentSyncResult]:
    """Re-sync every open registration of a child, e.g. after a sign-once signature.

    Events are locked in sorted order so concurrent callers cannot deadlock.
    """
    rows = db.execute(
        select(EventRegistration.event_id, EventRegistration.parent_id).where(
            EventRegistration.registrant_id == child_user_id,
            EventRegistration.registrant_type == RegistrantType.CHILD,
            EventRegistration.status.in_(CONSENT_SYNC_STATUSES),
        )
    ).all()
    targets = sorted({(event_id, parent_id or "") for event_id, parent_id in rows if _normalize_text(event_id)})
    results: list[ConsentSyncResult] = []
    for event_id, parent_id in targets:
        result = sync_child_registration_consent_status(
            db,
            event_id=event_id,
            child_user_id=child_user_id,
            parent_user_id=parent_id or None,
        )
        if result is not None:
            results.append(result)
    return results


def open_registration_event_ids(db: Session, *, registrant_id: str, registrant_type: RegistrantType) -> list[str]:
    """Sorted ids of events where the registrant has a registration still open to consent sync."""
    event_ids = db.scalars(
        select(EventRegistration.event_id).where(
            EventRegistration.registrant_id == registrant_id,
            EventRegistration.registrant_type == registrant_type,
            EventRegistration.status.in_(CONSENT_SYNC_STATUSES),
        )
    ).all()
    return sorted({value for value in event_ids if _normalize_text(value)})


def sync_all_participant_registrations(db: Session, *, user_id: str) -> list[ConsentSyncResult]:
    results: list[ConsentSyncResult] = []
    for event_id in open_registration_event_ids(db, registrant_id=user_id, registrant_type=RegistrantType.SELF):
        result = sync_participant_registration_consent_status(db, event_id=event_id, user_id=user_id)
        if result is not None:
            results.append(result)
    return results
