from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.biohost.models import Base

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


HANDLER_TYPES = {
    "webhook": "Webhook",
    "email": "Email",
    "slack": "Slack",
    "discord": "Discord",
    "telegram": "Telegram",
}
EVENTS = {
    "click": "Page view",
    "block_click": "Block click",
    "form_submit": "Form submission",
    "payment": "Payment",
}
MAX_CONSECUTIVE_FAILURES = 5


class NotificationHandler(Base):
    __tablename__ = "biolink_notification_handlers"
    __table_args__ = (Index("idx_notification_handlers_biolink_enabled", "biolink_id", "is_enabled"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    biolink_id: Mapped[int] = mapped_column(ForeignKey("biolinks.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    events: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: ["click"])

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    biolink: Mapped["BioLink"] = relationship("BioLink", back_populates="notification_handlers")

    def get_setting(self, key: str, default: Any = None) -> Any:
        return (self.settings or {}).get(key, default)

    def handles(self, event: str) -> bool:
        return self.is_enabled and event in (self.events or [])

    def record_success(self) -> None:
        self.trigger_count = (self.trigger_count or 0) + 1
        self.last_triggered_at = datetime.utcnow()
        self.consecutive_failures = 0

    def record_failure(self) -> bool:
        """Returns True when this failure tripped the auto-disable."""
        self.consecutive_failures = (self.consecutive_failures or 0) + 1
        self.last_failed_at = datetime.utcnow()
        if self.consecutive_failures >= MAX_CONSECUTIVE_FAILURES and self.is_enabled:
            self.is_enabled = False
            return True
        return False

    def reset_failures(self) -> None:
        self.consecutive_failures = 0
        self.last_failed_at = None
        self.is_enabled = True
