from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app, has_app_context
from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.biohost.models import Base

if TYPE_CHECKING:
    from app.biohost.modules.domains.models import Domain
    from app.biohost.modules.editor.models import Block
    from app.biohost.modules.notifications.models import NotificationHandler
    from app.biohost.modules.pixels.models import Pixel
    from app.biohost.modules.projects.models import Project
    from app.biohost.modules.pwa.models import Pwa
    from app.biohost.modules.themes.models import Theme


LINK_TYPES = {
    "biolink": "Bio page",
    "link": "Short link",
    "file": "File link",
    "vcard": "vCard",
    "event": "Event",
    "static": "Static page",
}

DEFAULT_DOMAIN = "https://bio.host.uk.com"


class BioLink(Base):
    __tablename__ = "biolinks"
    __table_args__ = (
        UniqueConstraint("domain_id", "url", name="uq_biolinks_domain_url"),
        Index("idx_biolinks_user_type_enabled", "user_id", "type", "is_enabled"),
        Index("idx_biolinks_user_project", "user_id", "project_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("biolink_projects.id", ondelete="SET NULL"), nullable=True)
    domain_id: Mapped[int | None] = mapped_column(ForeignKey("biolink_domains.id", ondelete="SET NULL"), nullable=True)
    theme_id: Mapped[int | None] = mapped_column(ForeignKey("biolink_themes.id", ondelete="SET NULL"), nullable=True)

    type: Mapped[str] = mapped_column(String(32), nullable=False, default="biolink")
    url: Mapped[str] = mapped_column(String(256), nullable=False)  # slug
    location_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    clicks: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), nullable=False, default=0)
    unique_clicks: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), nullable=False, default=0)
    last_click_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    project: Mapped["Project | None"] = relationship("Project", back_populates="biolinks", lazy="joined")
    domain: Mapped["Domain | None"] = relationship("Domain", foreign_keys=[domain_id], lazy="joined")
    theme: Mapped["Theme | None"] = relationship("Theme", lazy="joined")
    blocks: Mapped[list["Block"]] = relationship(
        "Block",
        back_populates="biolink",
        cascade="all, delete-orphan",
        order_by="Block.order",
        lazy="selectin",
    )
    pixels: Mapped[list["Pixel"]] = relationship(
        "Pixel",
        secondary="biolink_pixel",
        back_populates="biolinks",
        lazy="selectin",
    )
    notification_handlers: Mapped[list["NotificationHandler"]] = relationship(
        "NotificationHandler",
        back_populates="biolink",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    pwa: Mapped["Pwa | None"] = relationship(
        "Pwa",
        back_populates="biolink",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Dotted lookup into settings, e.g. "splash_page.enabled"."""
        node: Any = self.settings or {}
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        if not self.is_enabled:
            return False
        if self.start_date and self.start_date > now:
            return False
        if self.end_date and self.end_date < now:
            return False
        return True

    @property
    def type_label(self) -> str:
        return LINK_TYPES.get(self.type, self.type)

    @property
    def full_url(self) -> str:
        if self.domain is not None:
            base = self.domain.base_url
        elif has_app_context():
            base = current_app.config.get("BIOLINKS_DEFAULT_DOMAIN") or DEFAULT_DOMAIN
        else:
            base = DEFAULT_DOMAIN
        return f"{base.rstrip('/')}/{self.url}"
