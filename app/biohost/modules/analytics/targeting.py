"""
Visitor targeting.

Short links can restrict who gets redirected (settings["targeting"]) and any
block can restrict who sees it (block.settings["conditions"]). Both read the
same VisitorContext: CDN country header, parsed User-Agent, and the primary
languages from Accept-Language. Rules are ANDed; an empty list means "any".
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any

from app.biohost.modules.analytics.useragent import parse_user_agent
from app.biohost.utils import clean, is_http_url, parse_date

if TYPE_CHECKING:
    from flask import Request

COUNTRY_HEADERS = (
    "CF-IPCountry",
    "X-Country-Code",
    "CloudFront-Viewer-Country",
    "Fastly-Geo-Country-Code",
    "X-Vercel-IP-Country",
)
UNKNOWN_COUNTRIES = ("XX", "T1")

DEVICES = ("desktop", "mobile", "tablet")
BROWSERS = ("Chrome", "Safari", "Firefox", "Edge", "Opera", "Samsung Internet")
OPERATING_SYSTEMS = ("Windows", "macOS", "Linux", "iOS", "Android", "ChromeOS")
WEEKDAYS = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

REGION_MESSAGE = "This content is not available in your region."
REASON_MESSAGES = {
    "country_excluded": REGION_MESSAGE,
    "country_not_allowed": REGION_MESSAGE,
    "device_not_allowed": "This content is not available on your device.",
    "browser_not_allowed": "This content is not available in your browser.",
    "os_not_allowed": "This content is not available on your operating system.",
    "language_not_allowed": "This content is not available in your language.",
}

_LANG_RE = re.compile(r"^[a-z]{2,3}$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class VisitorContext:
    country: str | None = None
    device: str = "other"
    browser: str | None = None
    os: str | None = None
    languages: tuple[str, ...] = ()


@dataclass(frozen=True)
class TargetingResult:
    matches: bool
    reason: str | None = None
    fallback_url: str | None = None

    @property
    def message(self) -> str:
        return REASON_MESSAGES.get(self.reason or "", "This content is not available.")


# ---------- Request parsing ----------
def header_country(req: "Request") -> str | None:
    """First usable ISO code from the CDN geo headers; XX/T1 count as unknown."""
    for header in COUNTRY_HEADERS:
        code = (req.headers.get(header) or "").strip().upper()
        if not code:
            continue
        if len(code) != 2 or code in UNKNOWN_COUNTRIES:
            return None
        return code
    return None


def parse_accept_language(header: str | None) -> tuple[str, ...]:
    """Primary language codes in header order, lowercased and de-duplicated."""
    out: list[str] = []
    for part in (header or "").split(","):
        tag = part.split(";", 1)[0].strip().lower()
        primary = tag.split("-", 1)[0]
        if _LANG_RE.match(primary) and primary not in out:
            out.append(primary)
    return tuple(out)


def visitor_context(req: "Request") -> VisitorContext:
    ua = parse_user_agent(req.headers.get("User-Agent"))
    return VisitorContext(
        country=header_country(req),
        device=ua.device_type,
        browser=ua.browser_name,
        os=ua.os_name,
        languages=parse_accept_language(req.headers.get("Accept-Language")),
    )


# ---------- Matching ----------
def _codes(values) -> list[str]:
    return [str(v).strip().upper() for v in (values or []) if str(v).strip()]


def _lower(values) -> list[str]:
    return [str(v).strip().lower() for v in (values or []) if str(v).strip()]


def _audience_reason(rules: dict[str, Any], ctx: VisitorContext) -> str | None:
    """Device, browser, OS and language checks shared by pages and blocks."""
    devices = _lower(rules.get("devices"))
    if devices and ctx.device not in devices:
        return "device_not_allowed"
    browsers = _lower(rules.get("browsers"))
    if browsers and ctx.browser and ctx.browser.lower() not in browsers:
        return "browser_not_allowed"
    systems = _lower(rules.get("operating_systems"))
    if systems and ctx.os and ctx.os.lower() not in systems:
        return "os_not_allowed"
    languages = _lower(rules.get("languages"))
    if languages and ctx.languages and not any(lang in languages for lang in ctx.languages):
        return "language_not_allowed"
    return None


def evaluate_targeting(rules: dict[str, Any] | None, ctx: VisitorContext) -> TargetingResult:
    """
    Page-level targeting for short links.

    An unknown country passes an allow-list (geo headers are often missing
    behind proxies); an undetected browser or OS passes too.
    """
    if not rules or rules.get("enabled") is False:
        return TargetingResult(matches=True)
    fallback = clean(rules.get("fallback_url"))

    def miss(reason: str) -> TargetingResult:
        return TargetingResult(matches=False, reason=reason, fallback_url=fallback)

    if ctx.country and ctx.country in _codes(rules.get("exclude_countries")):
        return miss("country_excluded")
    countries = _codes(rules.get("countries"))
    if countries and ctx.country and ctx.country not in countries:
        return miss("country_not_allowed")
    reason = _audience_reason(rules, ctx)
    if reason:
        return miss(reason)
    return TargetingResult(matches=True)


def _clock(value: Any) -> time | None:
    value = clean(value)
    if not value or not _TIME_RE.match(value):
        return None
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _day(value: Any) -> date | None:
    try:
        return parse_date(clean(value))
    except ValueError:
        return None


def schedule_allows(schedule: dict[str, Any] | None, now: datetime) -> bool:
    """Dates are inclusive; days are 0=Sunday..6=Saturday; a time window may wrap midnight."""
    if not schedule:
        return True
    start, end = _day(schedule.get("start_date")), _day(schedule.get("end_date"))
    if start and now.date() < start:
        return False
    if end and now.date() > end:
        return False
    days = [int(d) for d in (schedule.get("days") or []) if str(d).isdigit()]
    if days and (now.weekday() + 1) % 7 not in days:
        return False
    opens, closes = _clock(schedule.get("time_start")), _clock(schedule.get("time_end"))
    if opens and closes:
        current = now.time().replace(second=0, microsecond=0)
        if opens <= closes:
            return opens <= current <= closes
        return current >= opens or current <= closes
    return True


def block_visible(conditions: dict[str, Any] | None, ctx: VisitorContext | None, now: datetime) -> bool:
    """
    Display conditions for one block. Unlike page targeting, an unknown
    country hides a block that lists countries.
    """
    if not conditions:
        return True
    if not schedule_allows(conditions.get("schedule"), now):
        return False
    if ctx is None:
        return True
    countries = _codes(conditions.get("countries"))
    if countries and ctx.country not in countries:
        return False
    return _audience_reason(conditions, ctx) is None


# ---------- Forms ----------
def _split_codes(raw: Any) -> list[str]:
    return [c for c in (p.strip() for p in re.split(r"[,\s]+", raw or "")) if c]


def rules_from_form(form, prefix: str) -> dict[str, Any]:
    """
    Read a targeting/conditions fieldset. Country and language lists are
    comma separated; device/browser/OS are checkbox groups.
    """
    return {
        "enabled": form.get(f"{prefix}_enabled") is not None,
        "countries": [c.upper() for c in _split_codes(form.get(f"{prefix}_countries"))],
        "exclude_countries": [c.upper() for c in _split_codes(form.get(f"{prefix}_exclude_countries"))],
        "devices": [d for d in form.getlist(f"{prefix}_devices") if d in DEVICES],
        "browsers": [b for b in form.getlist(f"{prefix}_browsers") if b in BROWSERS],
        "operating_systems": [o for o in form.getlist(f"{prefix}_operating_systems") if o in OPERATING_SYSTEMS],
        "languages": [lang.lower() for lang in _split_codes(form.get(f"{prefix}_languages"))],
        "fallback_url": clean(form.get(f"{prefix}_fallback_url")),
    }


def schedule_from_form(form, prefix: str) -> dict[str, Any]:
    return {
        "start_date": clean(form.get(f"{prefix}_start_date")),
        "end_date": clean(form.get(f"{prefix}_end_date")),
        "time_start": clean(form.get(f"{prefix}_time_start")),
        "time_end": clean(form.get(f"{prefix}_time_end")),
        "days": [int(d) for d in form.getlist(f"{prefix}_days") if d.isdigit() and int(d) < 7],
    }


def validate_rules(rules: dict[str, Any]) -> list[str]:
    errors = []
    for key, label in (("countries", "Countries"), ("exclude_countries", "Excluded countries")):
        bad = [c for c in rules.get(key) or [] if not re.match(r"^[A-Z]{2}$", c)]
        if bad:
            errors.append(f"{label} must be two-letter codes (got {', '.join(bad)}).")
    bad_langs = [lang for lang in rules.get("languages") or [] if not _LANG_RE.match(lang)]
    if bad_langs:
        errors.append(f"Languages must be ISO codes such as en or fr (got {', '.join(bad_langs)}).")
    fallback = rules.get("fallback_url")
    if fallback and not is_http_url(fallback):
        errors.append("Targeting fallback must be a valid http(s) URL.")
    return errors


def validate_schedule(schedule: dict[str, Any]) -> list[str]:
    errors = []
    for key, label in (("start_date", "Start date"), ("end_date", "End date")):
        if schedule.get(key) and _day(schedule[key]) is None:
            errors.append(f"{label} is not a valid date.")
    for key, label in (("time_start", "Start time"), ("time_end", "End time")):
        if schedule.get(key) and _clock(schedule[key]) is None:
            errors.append(f"{label} must be HH:MM.")
    start, end = _day(schedule.get("start_date")), _day(schedule.get("end_date"))
    if start and end and end < start:
        errors.append("End date must be after the start date.")
    return errors


def form_options() -> dict[str, tuple]:
    return {
        "devices": DEVICES,
        "browsers": BROWSERS,
        "operating_systems": OPERATING_SYSTEMS,
        "weekdays": WEEKDAYS,
    }


def conditions_from_form(form, prefix: str = "conditions") -> dict[str, Any]:
    """Block display conditions: the audience lists plus a weekly schedule."""
    rules = rules_from_form(form, prefix)
    return {
        "countries": rules["countries"],
        "devices": rules["devices"],
        "browsers": rules["browsers"],
        "operating_systems": rules["operating_systems"],
        "languages": rules["languages"],
        "schedule": schedule_from_form(form, prefix),
    }
