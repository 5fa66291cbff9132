from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.biohost.models import Base

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


REGIONS = ("header", "left", "content", "right", "footer")
REGION_SHORT_CODES = {"header": "H", "left": "L", "content": "C", "right": "R", "footer": "F"}
SHORT_CODE_REGIONS = {v: k for k, v in REGION_SHORT_CODES.items()}
BREAKPOINTS = ("phone", "tablet", "desktop")


class Block(Base):
    __tablename__ = "biolink_blocks"
    __table_args__ = (Index("idx_biolink_blocks_biolink_region_order", "biolink_id", "region", "order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    biolink_id: Mapped[int] = mapped_column(ForeignKey("biolinks.id", ondelete="CASCADE"), nullable=False)

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    region: Mapped[str] = mapped_column(String(16), nullable=False, default="content")
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    location_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)
    # Hidden breakpoints; None means the block shows everywhere.
    breakpoint_visibility: Mapped[list | None] = mapped_column(JSON, nullable=True)

    clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    biolink: Mapped["BioLink"] = relationship("BioLink", back_populates="blocks")

    @property
    def region_short(self) -> str:
        return REGION_SHORT_CODES.get(self.region, "C")

    @property
    def hlcrf_id(self) -> str:
        return f"{self.region_short}-{self.order}"

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        if not self.is_enabled:
            return False
        if self.start_date and self.start_date > now:
            return False
        if self.end_date and self.end_date < now:
            return False
        return True

    def is_visible_on(self, breakpoint: str) -> bool:
        if not self.breakpoint_visibility:
            return True
        return breakpoint not in self.breakpoint_visibility
