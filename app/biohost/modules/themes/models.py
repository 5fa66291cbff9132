from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.biohost.models import Base


CATEGORIES = {
    "professional": "Professional",
    "creative": "Creative",
    "minimal": "Minimal",
    "bold": "Bold",
    "elegant": "Elegant",
    "modern": "Modern",
    "classic": "Classic",
    "vibrant": "Vibrant",
}


class Theme(Base):
    __tablename__ = "biolink_themes"
    __table_args__ = (
        Index("idx_biolink_themes_system_active_sort", "is_system", "is_active", "sort_order"),
        Index("idx_biolink_themes_user_active", "user_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    name: Mapped[str] = mapped_column(String(64), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_gallery: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Set per request by the theme service; not persisted.
    is_locked = False
    is_favourited = False


class ThemeFavourite(Base):
    __tablename__ = "theme_favourites"
    __table_args__ = (UniqueConstraint("user_id", "theme_id", name="uq_theme_favourites_user_theme"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    theme_id: Mapped[int] = mapped_column(ForeignKey("biolink_themes.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
