from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import urlparse

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User

T = TypeVar("T")

HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def clean(value: Any) -> str | None:
    """Strip a form value; empty becomes None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def flag(value: Any) -> bool:
    """Checkbox-style truthiness for form values."""
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "on", "yes")


def parse_int(value: Any, default: int | None = None) -> int | None:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def is_hex_color(value: str | None) -> bool:
    return bool(value and HEX_COLOR_RE.match(value))


def is_valid_email(value: str | None) -> bool:
    return bool(value and EMAIL_RE.match(value))


def is_http_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def url_host(value: str | None) -> str | None:
    if not value:
        return None
    return (urlparse(value).hostname or "").lower() or None


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD."""
    s = (s or "").strip()
    if not s:
        return None
    return date.fromisoformat(s)


def parse_datetime(s: str | None) -> datetime | None:
    """Accepts YYYY-MM-DD or YYYY-MM-DDTHH:MM (datetime-local inputs)."""
    s = (s or "").strip()
    if not s:
        return None
    if "T" in s or " " in s:
        return datetime.fromisoformat(s)
    return datetime.combine(date.fromisoformat(s), time.min)


def get_owned(s: "Session", model: type[T], obj_id: Any, user: "User") -> T | None:
    """Load a row by id only if it belongs to user."""
    try:
        pk = int(obj_id)
    except (TypeError, ValueError):
        return None
    obj = s.get(model, pk)
    if obj is None or getattr(obj, "user_id", None) != user.id:
        return None
    return obj


def deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out
