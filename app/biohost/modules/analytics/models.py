from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.biohost.models import Base


DEVICE_TYPES = ("desktop", "mobile", "tablet", "other")


class Click(Base):
    """Raw click log. One row per page view or block click-through."""

    __tablename__ = "biolink_clicks"
    __table_args__ = (
        Index("idx_biolink_clicks_biolink_created", "biolink_id", "created_at"),
        Index("idx_biolink_clicks_biolink_country", "biolink_id", "country_code"),
        Index("idx_biolink_clicks_biolink_device", "biolink_id", "device_type"),
        Index("idx_biolink_clicks_block_created", "block_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    biolink_id: Mapped[int] = mapped_column(ForeignKey("biolinks.id", ondelete="CASCADE"), nullable=False)
    block_id: Mapped[int | None] = mapped_column(ForeignKey("biolink_blocks.id", ondelete="SET NULL"), nullable=True)

    visitor_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    device_type: Mapped[str] = mapped_column(String(16), nullable=False, default="other")
    os_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    browser_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    referrer_host: Mapped[str | None] = mapped_column(String(256), nullable=True)
    utm_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(64), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_unique: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
