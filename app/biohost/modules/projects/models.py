from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.biohost.models import Base

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


DEFAULT_PROJECT_COLOR = "#6366f1"


class Project(Base):
    __tablename__ = "biolink_projects"
    __table_args__ = (Index("idx_biolink_projects_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    color: Mapped[str] = mapped_column(String(16), nullable=False, default=DEFAULT_PROJECT_COLOR)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Biolinks survive project deletion unless the caller deletes them explicitly.
    biolinks: Mapped[list["BioLink"]] = relationship("BioLink", back_populates="project", lazy="selectin")
