from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from core.api_keys import hash_api_key
from core.db import Base
from models.api_key import ApiKey
from models.event import Event
from models.event_registration import EventRegistration, RegistrantType, RegistrationStatus
from models.parent_child_link import ParentChildLink, ParentChildLinkStatus
from models.signed_document import SignedDocument
from models.template_document import TemplateDocument


def make_request(path: str = "/", method: str = "POST", headers: dict[str, str] | None = None) -> Request:
    headers = headers or {}
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()],
        "client": ("127.0.0.1", 18000),
    }
    return Request(scope)


def make_memory_session() -> tuple[Session, object]:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    return session, engine


def seed_template(
    session: Session,
    template_id: str,
    *,
    required_signer_type: str | None = "PARTICIPANT",
    sign_once: bool = False,
) -> TemplateDocument:
    template = TemplateDocument(
        id=template_id,
        title=f"Template {template_id}",
        required_signer_type=required_signer_type,
        sign_once=sign_once,
    )
    session.add(template)
    session.commit()
    return template


def seed_event(session: Session, event_id: str, required_template_ids: list[str]) -> Event:
    event = Event(id=event_id, name=f"Event {event_id}", required_template_ids=list(required_template_ids))
    session.add(event)
    session.commit()
    return event


def seed_child_registration(
    session: Session,
    *,
    event_id: str,
    child_id: str,
    parent_id: str | None,
    status: RegistrationStatus = RegistrationStatus.PENDINGCONSENT,
    consent_status: str | None = "sent",
) -> EventRegistration:
    registration = EventRegistration(
        event_id=event_id,
        registrant_id=child_id,
        registrant_type=RegistrantType.CHILD,
        parent_id=parent_id,
        status=status,
        consent_status=consent_status,
    )
    session.add(registration)
    session.commit()
    return registration


def seed_participant_registration(
    session: Session,
    *,
    event_id: str,
    user_id: str,
    status: RegistrationStatus = RegistrationStatus.PENDINGCONSENT,
    consent_status: str | None = "sent",
) -> EventRegistration:
    registration = EventRegistration(
        event_id=event_id,
        registrant_id=user_id,
        registrant_type=RegistrantType.SELF,
        status=status,
        consent_status=consent_status,
    )
    session.add(registration)
    session.commit()
    return registration


def seed_signature(
    session: Session,
    *,
    template_id: str,
    user_id: str,
    signer_role: str,
    host_id: str | None = None,
    event_id: str | None = None,
    status: str = "SIGNED",
) -> SignedDocument:
    signed = SignedDocument(
        template_id=template_id,
        user_id=user_id,
        signer_role=signer_role,
        host_id=host_id,
        event_id=event_id,
        status=status,
    )
    session.add(signed)
    session.commit()
    return signed


def seed_parent_link(
    session: Session,
    *,
    parent_id: str,
    child_id: str,
    status: ParentChildLinkStatus = ParentChildLinkStatus.ACTIVE,
) -> ParentChildLink:
    link = ParentChildLink(parent_id=parent_id, child_id=child_id, status=status)
    session.add(link)
    session.commit()
    return link


def seed_api_key(session: Session, *, user_id: str, raw_key: str, is_admin: bool = False) -> ApiKey:
    api_key = ApiKey(user_id=user_id, is_admin=is_admin, key_hash=hash_api_key(raw_key), label=f"{user_id}-key")
    session.add(api_key)
    session.commit()
    return api_key
