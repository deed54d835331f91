import enum
import uuid

from sqlalchemy import DateTime, Enum, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class RegistrantType(str, enum.Enum):
    SELF = "SELF"
    CHILD = "CHILD"
    TEAM = "TEAM"


class RegistrationStatus(str, enum.Enum):
    PENDINGCONSENT = "PENDINGCONSENT"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    CANCELLED = "CANCELLED"
    CONSENTFAILED = "CONSENTFAILED"


CONSENT_SYNC_STATUSES = (RegistrationStatus.PENDINGCONSENT, RegistrationStatus.ACTIVE)


class EventRegistration(Base):
    __tablename__ = "event_registrations"
    __table_args__ = (
        UniqueConstraint("event_id", "registrant_id", name="uq_event_registrations_event_registrant"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    registrant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    registrant_type: Mapped[RegistrantType] = mapped_column(
        Enum(RegistrantType, name="registranttype", native_enum=False),
        nullable=False,
        default=RegistrantType.SELF,
    )
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[RegistrationStatus] = mapped_column(
        Enum(RegistrationStatus, name="registrationstatus", native_enum=False),
        nullable=False,
        default=RegistrationStatus.PENDINGCONSENT,
    )
    consent_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
