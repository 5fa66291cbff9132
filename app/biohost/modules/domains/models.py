from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.biohost.models import Base

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


VERIFICATION_STATUSES = ("pending", "verified", "failed")
TXT_RECORD_PREFIX = "_biohost-verify"
TXT_VALUE_PREFIX = "host-uk-verify="


class Domain(Base):
    __tablename__ = "biolink_domains"
    __table_args__ = (Index("idx_biolink_domains_user_enabled", "user_id", "is_enabled"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    host: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    scheme: Mapped[str] = mapped_column(String(8), nullable=False, default="https")

    # Default page served at "/" on this host.
    biolink_id: Mapped[int | None] = mapped_column(
        ForeignKey("biolinks.id", ondelete="SET NULL", use_alter=True, name="fk_biolink_domains_biolink_id"),
        nullable=True,
    )
    custom_index_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    custom_not_found_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    verification_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    default_biolink: Mapped["BioLink | None"] = relationship(
        "BioLink",
        foreign_keys=[biolink_id],
        post_update=True,
        lazy="joined",
    )

    @property
    def is_verified(self) -> bool:
        return self.verification_status == "verified"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def txt_record_host(self) -> str:
        return f"{TXT_RECORD_PREFIX}.{self.host}"

    @property
    def txt_record_value(self) -> str:
        return f"{TXT_VALUE_PREFIX}{self.verification_token or ''}"
