from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.biohost.utils import TIME_RE, clean, flag, is_http_url, is_valid_email

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


DEFAULT_TIMEZONE = "Europe/London"
DEFAULT_START_TIME = "10:00"
DEFAULT_END_TIME = "12:00"
LOCATION_TYPES = ("physical", "online", "hybrid")


def default_event_dates(today: date | None = None) -> dict[str, str]:
    """Tomorrow, 10:00 to 12:00."""
    tomorrow = (today or date.today()) + timedelta(days=1)
    return {
        "start_date": tomorrow.isoformat(),
        "start_time": DEFAULT_START_TIME,
        "end_date": tomorrow.isoformat(),
        "end_time": DEFAULT_END_TIME,
    }


def _combine(d: str | None, t: str | None) -> datetime | None:
    if not d:
        return None
    try:
        day = date.fromisoformat(d)
    except ValueError:
        return None
    if t and TIME_RE.match(t):
        hh, mm = t.split(":")
        return datetime.combine(day, time(int(hh), int(mm)))
    return datetime.combine(day, time.min)


def validate_event_payload(payload: dict) -> list[str]:
    errors = []
    name = clean(payload.get("event_name"))
    if not name:
        errors.append("Event name is required.")
    elif len(name) > 256:
        errors.append("Event name must be 256 characters or fewer.")

    for key in ("event_start_time", "event_end_time"):
        value = clean(payload.get(key))
        if value and not TIME_RE.match(value):
            errors.append(f"{key.replace('_', ' ').capitalize()} must be HH:MM.")

    start_date = clean(payload.get("event_start_date"))
    end_date = clean(payload.get("event_end_date"))
    if not start_date:
        errors.append("Start date is required.")
    elif _combine(start_date, None) is None:
        errors.append("Start date is invalid.")
    if end_date and _combine(end_date, None) is None:
        errors.append("End date is invalid.")

    start = _combine(start_date, clean(payload.get("event_start_time")))
    end = _combine(end_date or start_date, clean(payload.get("event_end_time")))
    if start and end and end < start:
        errors.append("End must be at or after the start.")

    tz = clean(payload.get("timezone")) or DEFAULT_TIMEZONE
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append("Timezone is not recognised.")

    location_type = clean(payload.get("location_type")) or "physical"
    if location_type not in LOCATION_TYPES:
        errors.append(f"Invalid location type. Must be one of: {', '.join(LOCATION_TYPES)}")
    online_url = clean(payload.get("location_online_url"))
    if online_url and not is_http_url(online_url):
        errors.append("Online URL must be a valid http(s) URL.")
    organiser_email = clean(payload.get("organiser_email"))
    if organiser_email and not is_valid_email(organiser_email):
        errors.append("Organiser email is invalid.")
    return errors


def build_event_settings(payload: dict) -> dict[str, Any]:
    defaults = default_event_dates()
    start_date = clean(payload.get("event_start_date")) or defaults["start_date"]
    return {
        "event_name": clean(payload.get("event_name")),
        "description": clean(payload.get("description")),
        "start_date": start_date,
        "start_time": clean(payload.get("event_start_time")) or defaults["start_time"],
        "end_date": clean(payload.get("event_end_date")) or start_date,
        "end_time": clean(payload.get("event_end_time")) or defaults["end_time"],
        "timezone": clean(payload.get("timezone")) or DEFAULT_TIMEZONE,
        "all_day": flag(payload.get("all_day")),
        "location": {
            "type": clean(payload.get("location_type")) or "physical",
            "name": clean(payload.get("location_name")),
            "address": clean(payload.get("location_address")),
            "online_url": clean(payload.get("location_online_url")),
        },
        "organiser": {
            "name": clean(payload.get("organiser_name")),
            "email": clean(payload.get("organiser_email")),
        },
    }


def event_window(event: dict) -> tuple[datetime | None, datetime | None]:
    start = _combine(event.get("start_date"), event.get("start_time"))
    end = _combine(event.get("end_date") or event.get("start_date"), event.get("end_time"))
    return start, end


def _escape(value: str | None) -> str:
    """RFC 5545 TEXT escaping."""
    if not value:
        return ""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> str:
    # content lines are folded at 75 octets, never inside a UTF-8 sequence
    if len(line.encode("utf-8")) <= 75:
        return line
    parts = []
    current, size, limit = [], 0, 75
    for ch in line:
        n = len(ch.encode("utf-8"))
        if size + n > limit:
            parts.append("".join(current))
            current, size, limit = [], 0, 74
        current.append(ch)
        size += n
    parts.append("".join(current))
    return "\r\n ".join(parts)


def _utc(dt: datetime, tz_name: str) -> str:
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo(DEFAULT_TIMEZONE)
    return dt.replace(tzinfo=tz).astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def render_ics(biolink: "BioLink", now: datetime | None = None) -> str:
    event = biolink.get_setting("event", {}) or {}
    start, end = event_window(event)
    if start is None:
        start = datetime.combine(date.today(), time.min)
    if end is None:
        end = start
    tz_name = event.get("timezone") or DEFAULT_TIMEZONE
    stamp = (now or datetime.utcnow()).strftime("%Y%m%dT%H%M%SZ")

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//BioHost//Events//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:biolink-{biolink.id}@biohost",
        f"DTSTAMP:{stamp}",
    ]
    if event.get("all_day"):
        lines.append(f"DTSTART;VALUE=DATE:{start.strftime('%Y%m%d')}")
        # DTEND is exclusive for all-day events
        lines.append(f"DTEND;VALUE=DATE:{(end.date() + timedelta(days=1)).strftime('%Y%m%d')}")
    else:
        lines.append(f"DTSTART:{_utc(start, tz_name)}")
        lines.append(f"DTEND:{_utc(end, tz_name)}")
    lines.append(f"SUMMARY:{_escape(event.get('event_name'))}")
    if event.get("description"):
        lines.append(f"DESCRIPTION:{_escape(event['description'])}")

    location = event.get("location") or {}
    where = ", ".join(p for p in (location.get("name"), location.get("address")) if p)
    if location.get("type") in ("online", "hybrid") and location.get("online_url"):
        where = ", ".join(p for p in (where, location["online_url"]) if p)
    if where:
        lines.append(f"LOCATION:{_escape(where)}")

    organiser = event.get("organiser") or {}
    if organiser.get("email"):
        cn = f";CN={_escape(organiser.get('name'))}" if organiser.get("name") else ""
        lines.append(f"ORGANIZER{cn}:mailto:{organiser['email']}")
    lines.append(f"URL:{biolink.full_url}")
    lines.extend(["END:VEVENT", "END:VCALENDAR"])
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"
