from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.biohost.models import Base


SUBMISSION_TYPES = {
    "email": "Email",
    "phone": "Phone",
    "contact": "Contact",
}


class Submission(Base):
    """One collector form post. Field values live in data; the IP is only kept hashed."""

    __tablename__ = "biolink_submissions"
    __table_args__ = (
        Index("idx_biolink_submissions_biolink_created", "biolink_id", "created_at"),
        Index("idx_biolink_submissions_biolink_type", "biolink_id", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    biolink_id: Mapped[int] = mapped_column(ForeignKey("biolinks.id", ondelete="CASCADE"), nullable=False)
    block_id: Mapped[int] = mapped_column(ForeignKey("biolink_blocks.id", ondelete="CASCADE"), nullable=False)

    type: Mapped[str] = mapped_column(String(16), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    ip_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def get(self, key: str, default: Any = None) -> Any:
        return (self.data or {}).get(key, default)

    @property
    def summary(self) -> str:
        if self.type == "phone":
            return self.get("phone") or ""
        return self.get("email") or ""
