import uuid

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    required_template_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def normalized_required_template_ids(self) -> list[str]:
        raw = self.required_template_ids if isinstance(self.required_template_ids, list) else []
        seen: set[str] = set()
        result: list[str] = []
        for value in raw:
            if not isinstance(value, str) or not value.strip():
                continue
            template_id = value.strip()
            if template_id in seen:
                continue
            seen.add(template_id)
            result.append(template_id)
        return result
