import enum
import uuid

from sqlalchemy import Boolean, DateTime, Enum, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base
from core.signer_types import RequiredSignerType, normalize_required_signer_type


class TemplateDocumentType(str, enum.Enum):
    PDF = "PDF"
    TEXT = "TEXT"


class TemplateDocument(Base):
    __tablename__ = "template_documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    type: Mapped[TemplateDocumentType] = mapped_column(
        Enum(TemplateDocumentType, name="templatedocumenttype", native_enum=False),
        nullable=False,
        default=TemplateDocumentType.PDF,
    )
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Stored as written by the template editor; read through signer_type.
    required_signer_type: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=RequiredSignerType.PARTICIPANT.value,
    )
    sign_once: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def signer_type(self) -> RequiredSignerType:
        return normalize_required_signer_type(self.required_signer_type)
