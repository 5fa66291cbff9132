from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.biohost.models import Base

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


biolink_pixel = Table(
    "biolink_pixel",
    Base.metadata,
    Column("biolink_id", ForeignKey("biolinks.id", ondelete="CASCADE"), primary_key=True),
    Column("pixel_id", ForeignKey("biolink_pixels.id", ondelete="CASCADE"), primary_key=True),
)


class Pixel(Base):
    __tablename__ = "biolink_pixels"
    __table_args__ = (Index("idx_biolink_pixels_user_type", "user_id", "type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    pixel_id: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    biolinks: Mapped[list["BioLink"]] = relationship(
        "BioLink",
        secondary=biolink_pixel,
        back_populates="pixels",
        lazy="selectin",
    )
