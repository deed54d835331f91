import enum
import uuid

from sqlalchemy import DateTime, Index, String, event, func
from sqlalchemy.orm import Mapped, mapped_column, validates

from core.db import Base


class SignedDocumentStatus(str, enum.Enum):
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"


def canonical_signed_status(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip().upper()


class SignedDocument(Base):
    __tablename__ = "signed_documents"
    __table_args__ = (
        Index("ix_signed_documents_template_user_role", "template_id", "user_id", "signer_role"),
        Index("ix_signed_documents_host_event", "host_id", "event_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    template_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    signer_role: Mapped[str] = mapped_column(String(32), nullable=False)
    # Child the signature was made for; null for participant signatures.
    host_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    organization_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=SignedDocumentStatus.SIGNED.value)
    signed_document_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    document_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    signer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    signed_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @validates("status")
    def _canonicalize_status(self, _key: str, value: str | None) -> str | None:
        return canonical_signed_status(value)


@event.listens_for(SignedDocument, "before_update", propagate=True)
def _prevent_update(_mapper, _connection, _target) -> None:
    raise ValueError("signed_documents rows are immutable")
