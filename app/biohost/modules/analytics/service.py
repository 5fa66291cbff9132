from __future__ import annotations

import hashlib
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.biohost import entitlements
from app.biohost.modules.analytics.models import DEVICE_TYPES, Click
from app.biohost.modules.analytics.targeting import header_country
from app.biohost.modules.analytics.useragent import parse_user_agent
from app.biohost.utils import url_host

if TYPE_CHECKING:
    from flask import Request
    from sqlalchemy.orm import Query, Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink
    from app.biohost.modules.editor.models import Block


PERIODS = {"24h": 1, "7d": 7, "30d": 30, "90d": 90, "1y": 365}
PERIOD_LABELS = {"24h": "Last 24 hours", "7d": "Last 7 days", "30d": "Last 30 days", "90d": "Last 90 days", "1y": "Last year"}
DEFAULT_PERIOD = "7d"

COUNTRY_NAMES = {
    "GB": "United Kingdom",
    "IE": "Ireland",
    "US": "United States",
    "CA": "Canada",
    "AU": "Australia",
    "NZ": "New Zealand",
    "DE": "Germany",
    "FR": "France",
    "ES": "Spain",
    "IT": "Italy",
    "NL": "Netherlands",
    "BE": "Belgium",
    "PT": "Portugal",
    "SE": "Sweden",
    "NO": "Norway",
    "DK": "Denmark",
    "FI": "Finland",
    "PL": "Poland",
    "CH": "Switzerland",
    "AT": "Austria",
    "IN": "India",
    "JP": "Japan",
    "CN": "China",
    "KR": "South Korea",
    "SG": "Singapore",
    "BR": "Brazil",
    "MX": "Mexico",
    "AR": "Argentina",
    "ZA": "South Africa",
    "NG": "Nigeria",
    "AE": "United Arab Emirates",
    "TR": "Turkey",
    "UA": "Ukraine",
    "RU": "Russia",
}


# ---------- Recording ----------
def client_ip(req: "Request") -> str:
    forwarded = req.headers.get("CF-Connecting-IP") or (req.headers.get("X-Forwarded-For") or "").split(",")[0]
    return forwarded.strip() or (req.remote_addr or "")


def visitor_hash(ip: str, user_agent: str, day: date) -> str:
    return hashlib.sha256(f"{ip}|{user_agent}|{day.isoformat()}".encode("utf-8")).hexdigest()


def country_code(req: "Request") -> str | None:
    return header_country(req)


def referrer_host(req: "Request") -> str | None:
    """External referrer host only; same-site navigation counts as direct."""
    host = url_host(req.referrer)
    if not host:
        return None
    own = (req.host or "").split(":", 1)[0].lower()
    if host == own:
        return None
    return host[:256]


def record_click(
    s: "Session",
    biolink: "BioLink",
    req: "Request",
    block: "Block | None" = None,
    now: datetime | None = None,
) -> Click:
    now = now or datetime.utcnow()
    ua = req.headers.get("User-Agent") or ""
    info = parse_user_agent(ua)
    vh = visitor_hash(client_ip(req), ua, now.date())

    day_start = datetime.combine(now.date(), time.min)
    seen_today = (
        s.query(Click.id)
        .filter(
            Click.biolink_id == biolink.id,
            Click.visitor_hash == vh,
            Click.created_at >= day_start,
        )
        .first()
        is not None
    )

    click = Click(
        biolink_id=biolink.id,
        block_id=block.id if block is not None else None,
        visitor_hash=vh,
        country_code=country_code(req),
        device_type=info.device_type,
        os_name=info.os_name,
        browser_name=info.browser_name,
        referrer_host=referrer_host(req),
        utm_source=(req.args.get("utm_source") or "")[:64] or None,
        utm_medium=(req.args.get("utm_medium") or "")[:64] or None,
        utm_campaign=(req.args.get("utm_campaign") or "")[:64] or None,
        is_unique=not seen_today,
        created_at=now,
    )
    s.add(click)

    if block is not None:
        block.clicks = (block.clicks or 0) + 1
    else:
        biolink.clicks = (biolink.clicks or 0) + 1
        if click.is_unique:
            biolink.unique_clicks = (biolink.unique_clicks or 0) + 1
        biolink.last_click_at = now
    return click


def click_event_data(click: Click, block: "Block | None" = None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "country_code": click.country_code,
        "device_type": click.device_type,
        "referrer": click.referrer_host,
    }
    if block is not None:
        data["block_id"] = block.id
        data["block_type"] = block.type
    return data


# ---------- Periods and retention ----------
def retention_days(user: "User") -> int | None:
    """None means unlimited."""
    from flask import current_app

    default = int(current_app.config.get("ANALYTICS_DEFAULT_RETENTION_DAYS") or 30)
    if not entitlements.has_feature(user, "bio.analytics_days"):
        return default
    return entitlements.limit_for(user, "bio.analytics_days")


def period_window(period: str | None, now: datetime | None = None) -> tuple[datetime, datetime]:
    now = now or datetime.utcnow()
    end = datetime.combine(now.date(), time.max)
    if period == "24h":
        return now - timedelta(hours=24), end
    days = PERIODS.get(period or "", PERIODS[DEFAULT_PERIOD])
    start = datetime.combine(now.date() - timedelta(days=days - 1), time.min)
    return start, end


def resolve_window(user: "User", period: str | None, now: datetime | None = None) -> dict[str, Any]:
    period = period if period in PERIODS else DEFAULT_PERIOD
    now = now or datetime.utcnow()
    start, end = period_window(period, now)
    days = retention_days(user)
    limited = False
    if days is not None:
        earliest = datetime.combine(now.date() - timedelta(days=days), time.min)
        if start < earliest:
            start = earliest
            limited = True
    return {
        "period": period,
        "label": PERIOD_LABELS[period],
        "start": start,
        "end": end,
        "limited": limited,
        "retention_days": days,
    }


# ---------- Queries ----------
def _scoped(s: "Session", biolink_ids: list[int], start: datetime, end: datetime) -> "Query":
    return s.query(Click).filter(
        Click.biolink_id.in_(biolink_ids),
        Click.created_at >= start,
        Click.created_at <= end,
    )


def _grouped(s: "Session", column, biolink_ids: list[int], start: datetime, end: datetime, limit: int | None):
    """Page views only, so breakdowns add up to the summary count."""
    q = (
        s.query(column, func.count(Click.id).label("n"))
        .filter(
            Click.biolink_id.in_(biolink_ids),
            Click.block_id.is_(None),
            Click.created_at >= start,
            Click.created_at <= end,
        )
        .group_by(column)
        .order_by(func.count(Click.id).desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def summary(s: "Session", biolink_ids: list[int], start: datetime, end: datetime) -> dict[str, int]:
    q = _scoped(s, biolink_ids, start, end).filter(Click.block_id.is_(None))
    clicks = q.count()
    unique = q.filter(Click.is_unique.is_(True)).count()
    return {"clicks": clicks, "unique_clicks": unique}


def clicks_over_time(s: "Session", biolink_ids: list[int], start: datetime, end: datetime) -> dict[str, list]:
    rows = (
        s.query(func.date(Click.created_at), func.count(Click.id))
        .filter(
            Click.biolink_id.in_(biolink_ids),
            Click.block_id.is_(None),
            Click.created_at >= start,
            Click.created_at <= end,
        )
        .group_by(func.date(Click.created_at))
        .all()
    )
    counts = {str(day)[:10]: int(n) for day, n in rows}
    labels, data = [], []
    day = start.date()
    while day <= end.date():
        labels.append(f"{day.strftime('%b')} {day.day}")
        data.append(counts.get(day.isoformat(), 0))
        day += timedelta(days=1)
    return {"labels": labels, "data": data}


def country_name(code: str | None) -> str:
    if not code:
        return "Unknown"
    return COUNTRY_NAMES.get(code.upper(), code.upper())


def by_country(s, biolink_ids, start, end, limit: int = 10) -> list[dict[str, Any]]:
    return [
        {"code": code, "name": country_name(code), "clicks": int(n)}
        for code, n in _grouped(s, Click.country_code, biolink_ids, start, end, limit)
    ]


def by_device(s, biolink_ids, start, end) -> list[dict[str, Any]]:
    rows = dict(_grouped(s, Click.device_type, biolink_ids, start, end, None))
    return [{"device": d, "clicks": int(rows.get(d, 0))} for d in DEVICE_TYPES if rows.get(d)]


def by_browser(s, biolink_ids, start, end, limit: int = 5) -> list[dict[str, Any]]:
    return [
        {"browser": b or "Unknown", "clicks": int(n)}
        for b, n in _grouped(s, Click.browser_name, biolink_ids, start, end, limit)
    ]


def by_os(s, biolink_ids, start, end, limit: int = 5) -> list[dict[str, Any]]:
    return [
        {"os": o or "Unknown", "clicks": int(n)}
        for o, n in _grouped(s, Click.os_name, biolink_ids, start, end, limit)
    ]


def by_referrer(s, biolink_ids, start, end, limit: int = 10) -> list[dict[str, Any]]:
    return [
        {"referrer": r or "Direct", "clicks": int(n)}
        for r, n in _grouped(s, Click.referrer_host, biolink_ids, start, end, limit)
    ]


def by_utm_source(s, biolink_ids, start, end, limit: int = 10) -> list[dict[str, Any]]:
    rows = _grouped(s, Click.utm_source, biolink_ids, start, end, None)
    return [{"source": v, "clicks": int(n)} for v, n in rows if v][:limit]


def by_utm_campaign(s, biolink_ids, start, end, limit: int = 10) -> list[dict[str, Any]]:
    rows = _grouped(s, Click.utm_campaign, biolink_ids, start, end, None)
    return [{"campaign": v, "clicks": int(n)} for v, n in rows if v][:limit]


def by_block(s: "Session", biolink_ids: list[int], start: datetime, end: datetime, limit: int = 10) -> list[dict[str, Any]]:
    from app.biohost.modules.editor.models import Block

    rows = (
        s.query(Block, func.count(Click.id))
        .join(Click, Click.block_id == Block.id)
        .filter(Click.biolink_id.in_(biolink_ids), Click.created_at >= start, Click.created_at <= end)
        .group_by(Block.id)
        .order_by(func.count(Click.id).desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "block_id": block.id,
            "type": block.type,
            "label": (block.settings or {}).get("name") or (block.settings or {}).get("text") or block.type,
            "clicks": int(n),
        }
        for block, n in rows
    ]


def biolink_report(s: "Session", biolink: "BioLink", user: "User", period: str | None) -> dict[str, Any]:
    window = resolve_window(user, period)
    ids = [biolink.id]
    start, end = window["start"], window["end"]
    return {
        "window": window,
        "summary": summary(s, ids, start, end),
        "chart": clicks_over_time(s, ids, start, end),
        "countries": by_country(s, ids, start, end),
        "devices": by_device(s, ids, start, end),
        "browsers": by_browser(s, ids, start, end),
        "os": by_os(s, ids, start, end),
        "referrers": by_referrer(s, ids, start, end),
        "utm_sources": by_utm_source(s, ids, start, end),
        "utm_campaigns": by_utm_campaign(s, ids, start, end),
        "blocks": by_block(s, ids, start, end),
    }


def overview(s: "Session", user: "User", period: str | None) -> dict[str, Any]:
    from app.biohost.modules.biolinks.models import BioLink

    window = resolve_window(user, period)
    start, end = window["start"], window["end"]
    biolinks = s.query(BioLink).filter(BioLink.user_id == user.id).all()
    ids = [b.id for b in biolinks]
    totals = {"clicks": 0, "unique_clicks": 0, "biolinks": len(biolinks), "active_biolinks": sum(1 for b in biolinks if b.is_active())}
    if not ids:
        return {
            "window": window,
            "totals": totals,
            "chart": clicks_over_time(s, [-1], start, end),
            "top_biolinks": [],
            "countries": [],
            "devices": [],
            "referrers": [],
        }
    totals.update(summary(s, ids, start, end))

    by_id = {b.id: b for b in biolinks}
    top_rows = (
        s.query(Click.biolink_id, func.count(Click.id))
        .filter(Click.biolink_id.in_(ids), Click.block_id.is_(None), Click.created_at >= start, Click.created_at <= end)
        .group_by(Click.biolink_id)
        .order_by(func.count(Click.id).desc())
        .limit(10)
        .all()
    )
    return {
        "window": window,
        "totals": totals,
        "chart": clicks_over_time(s, ids, start, end),
        "top_biolinks": [{"biolink": by_id[bid], "clicks": int(n)} for bid, n in top_rows],
        "countries": by_country(s, ids, start, end),
        "devices": by_device(s, ids, start, end),
        "referrers": by_referrer(s, ids, start, end),
    }


# ---------- Pruning ----------
def prune_clicks(s: "Session", user: "User", days: int | None, now: datetime | None = None) -> int:
    """Delete raw clicks older than the retention window. Counters on biolinks are left alone."""
    from app.biohost.modules.biolinks.models import BioLink

    if days is None:
        return 0
    now = now or datetime.utcnow()
    cutoff = datetime.combine(now.date() - timedelta(days=days), time.min)
    ids = [row[0] for row in s.query(BioLink.id).filter(BioLink.user_id == user.id).all()]
    if not ids:
        return 0
    return (
        s.query(Click)
        .filter(Click.biolink_id.in_(ids), Click.created_at < cutoff)
        .delete(synchronize_session=False)
    )
