from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.biohost.models import Base

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


class Pwa(Base):
    __tablename__ = "biolink_pwas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    biolink_id: Mapped[int] = mapped_column(ForeignKey("biolinks.id", ondelete="CASCADE"), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    theme_color: Mapped[str] = mapped_column(String(16), nullable=False, default="#6366f1")
    background_color: Mapped[str] = mapped_column(String(16), nullable=False, default="#ffffff")
    display: Mapped[str] = mapped_column(String(16), nullable=False, default="standalone")
    orientation: Mapped[str] = mapped_column(String(16), nullable=False, default="any")
    icon_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    icon_maskable_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    screenshots: Mapped[list | None] = mapped_column(JSON, nullable=True)
    shortcuts: Mapped[list | None] = mapped_column(JSON, nullable=True)
    start_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    scope: Mapped[str | None] = mapped_column(String(512), nullable=True)
    lang: Mapped[str] = mapped_column(String(8), nullable=False, default="en-GB")
    dir: Mapped[str] = mapped_column(String(8), nullable=False, default="auto")

    installs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    biolink: Mapped["BioLink"] = relationship("BioLink", back_populates="pwa")
