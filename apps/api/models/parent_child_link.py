import enum
import uuid

from sqlalchemy import DateTime, Enum, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class ParentChildLinkStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    INACTIVE = "INACTIVE"


class ParentChildLink(Base):
    __tablename__ = "parent_child_links"
    __table_args__ = (
        UniqueConstraint("parent_id", "child_id", name="uq_parent_child_links_parent_child"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    parent_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    child_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[ParentChildLinkStatus] = mapped_column(
        Enum(ParentChildLinkStatus, name="parentchildlinkstatus", native_enum=False),
        nullable=False,
        default=ParentChildLinkStatus.PENDING,
    )
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
