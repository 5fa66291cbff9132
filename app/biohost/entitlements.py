"""
Plan entitlements.

Every feature code has a default (enabled, limit) pair; a UserEntitlement row
overrides it for one user. Countable features also register a usage counter so
checks can report used/limit/remaining.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User


class EntitlementDenied(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


# code -> (label, enabled by default, default limit; None = unlimited)
FEATURES: dict[str, tuple[str, bool, int | None]] = {
    "bio.pages": ("Pages", True, 10),
    "bio.shortlinks": ("Short links", True, 50),
    "bio.domains": ("Custom domains", True, 1),
    "bio.pixels": ("Tracking pixels", True, 5),
    "bio.notifications": ("Notification handlers per page", True, 3),
    "bio.templates": ("Templates", True, None),
    "bio.themes.custom": ("Custom themes", True, None),
    "bio.analytics_days": ("Analytics retention (days)", True, 30),
    "bio.pwa": ("Progressive web app", False, None),
    "bio.tier.pro": ("Pro blocks and premium designs", False, None),
    "bio.tier.ultimate": ("Ultimate blocks", False, None),
}


@dataclass(frozen=True)
class EntitlementCheck:
    code: str
    allowed: bool
    limit: int | None
    used: int | None

    @property
    def remaining(self) -> int | None:
        if self.limit is None or self.used is None:
            return None
        return max(self.limit - self.used, 0)

    @property
    def label(self) -> str:
        return FEATURES.get(self.code, (self.code, False, None))[0]


def _count_pages(s: "Session", user: "User", scope_id: int | None) -> int:
    from app.biohost.modules.biolinks.models import BioLink

    return (
        s.query(func.count(BioLink.id))
        .filter(BioLink.user_id == user.id, BioLink.type != "link")
        .scalar()
        or 0
    )


def _count_shortlinks(s: "Session", user: "User", scope_id: int | None) -> int:
    from app.biohost.modules.biolinks.models import BioLink

    return (
        s.query(func.count(BioLink.id))
        .filter(BioLink.user_id == user.id, BioLink.type == "link")
        .scalar()
        or 0
    )


def _count_domains(s: "Session", user: "User", scope_id: int | None) -> int:
    from app.biohost.modules.domains.models import Domain

    return s.query(func.count(Domain.id)).filter(Domain.user_id == user.id).scalar() or 0


def _count_pixels(s: "Session", user: "User", scope_id: int | None) -> int:
    from app.biohost.modules.pixels.models import Pixel

    return s.query(func.count(Pixel.id)).filter(Pixel.user_id == user.id).scalar() or 0


def _count_notification_handlers(s: "Session", user: "User", scope_id: int | None) -> int:
    from app.biohost.modules.notifications.models import NotificationHandler

    q = s.query(func.count(NotificationHandler.id)).filter(NotificationHandler.user_id == user.id)
    if scope_id is not None:
        q = q.filter(NotificationHandler.biolink_id == scope_id)
    return q.scalar() or 0


_COUNTERS: dict[str, Callable[["Session", "User", int | None], int]] = {
    "bio.pages": _count_pages,
    "bio.shortlinks": _count_shortlinks,
    "bio.domains": _count_domains,
    "bio.pixels": _count_pixels,
    "bio.notifications": _count_notification_handlers,
}


def _resolve(user: "User", code: str) -> tuple[bool, int | None]:
    _label, enabled, limit = FEATURES.get(code, (code, False, None))
    for row in user.entitlements or []:
        if row.feature_code == code:
            return row.is_enabled, row.limit_value
    return enabled, limit


def can(s: "Session", user: "User", code: str, *, scope_id: int | None = None) -> EntitlementCheck:
    """Check one feature. scope_id narrows per-page counters (notification handlers)."""
    enabled, limit = _resolve(user, code)
    counter = _COUNTERS.get(code)
    used = counter(s, user, scope_id) if counter else None
    allowed = enabled
    if allowed and limit is not None and used is not None and used >= limit:
        allowed = False
    return EntitlementCheck(code=code, allowed=allowed, limit=limit, used=used)


def limit_for(user: "User", code: str) -> int | None:
    enabled, limit = _resolve(user, code)
    return limit if enabled else None


def has_feature(user: "User", code: str) -> bool:
    enabled, _limit = _resolve(user, code)
    return enabled


def has_tier(user: "User", tier: str | None) -> bool:
    """Ultimate also satisfies pro."""
    if not tier:
        return True
    if tier == "pro":
        return has_feature(user, "bio.tier.pro") or has_feature(user, "bio.tier.ultimate")
    return has_feature(user, f"bio.tier.{tier}")


def has_premium_access(user: "User") -> bool:
    return has_tier(user, "pro")


def require(s: "Session", user: "User", code: str, *, scope_id: int | None = None) -> EntitlementCheck:
    check = can(s, user, code, scope_id=scope_id)
    if not check.allowed:
        if check.limit is not None and check.used is not None and check.used >= check.limit:
            message = f"You have reached your {check.label.lower()} limit ({check.used}/{check.limit})."
        else:
            message = f"Your plan does not include {check.label.lower()}."
        raise EntitlementDenied(code, message)
    return check


def set_entitlement(
    s: "Session",
    user: "User",
    code: str,
    *,
    enabled: bool,
    limit: int | None,
) -> None:
    from app.biohost.models import UserEntitlement

    if code not in FEATURES:
        raise ValueError(f"Unknown feature code: {code}")
    row = next((r for r in user.entitlements if r.feature_code == code), None)
    if row is None:
        row = UserEntitlement(user_id=user.id, feature_code=code)
        user.entitlements.append(row)
        s.add(row)
    row.is_enabled = enabled
    row.limit_value = limit
    row.updated_at = datetime.utcnow()


def summary(s: "Session", user: "User", codes: tuple[str, ...] = ("bio.pages", "bio.shortlinks")) -> list[EntitlementCheck]:
    return [can(s, user, code) for code in codes]
