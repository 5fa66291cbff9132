from __future__ import annotations

import hashlib
import re
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.biohost.audit import record_event
from app.biohost.modules.analytics.service import client_ip
from app.biohost.modules.analytics.targeting import header_country
from app.biohost.modules.editor.blocks import COLLECTOR_BLOCK_TYPES
from app.biohost.modules.submissions.models import SUBMISSION_TYPES, Submission
from app.biohost.utils import clean, is_valid_email, parse_date, parse_int

if TYPE_CHECKING:
    from flask import Request
    from sqlalchemy.orm import Query, Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink
    from app.biohost.modules.editor.models import Block


HONEYPOT_FIELD = "website"
DEFAULT_SUCCESS = {
    "email": "Thanks for subscribing.",
    "phone": "Thanks, we'll be in touch.",
    "contact": "Thanks for your message.",
}
MAX_LENGTHS = {"name": 128, "email": 320, "phone": 32, "message": 2000}
PHONE_RE = re.compile(r"^\+?[0-9 ()./-]{5,32}$")
EXPORT_COLUMNS = ("Submitted", "Type", "Block", "Name", "Email", "Phone", "Message", "Country")


def submission_type(block: "Block") -> str | None:
    return COLLECTOR_BLOCK_TYPES.get(block.type)


def is_spam(form) -> bool:
    """The honeypot field is hidden from people; anything in it came from a bot."""
    return bool(clean(form.get(HONEYPOT_FIELD)))


def validate_submission(kind: str, form) -> tuple[dict[str, str], list[str]]:
    """Returns the cleaned field values and any errors, first error first."""
    data = {}
    for key in MAX_LENGTHS:
        value = clean(form.get(key))
        if value:
            data[key] = value
    errors = []
    if kind in ("email", "contact"):
        email = data.get("email")
        if not email:
            errors.append("Email is required.")
        elif not is_valid_email(email):
            errors.append("Please enter a valid email address.")
    if kind == "phone":
        phone = data.get("phone")
        if not phone:
            errors.append("Phone number is required.")
        elif not PHONE_RE.match(phone):
            errors.append("Please enter a valid phone number.")
    if kind == "contact" and not data.get("message"):
        errors.append("Message is required.")
    for key, limit in MAX_LENGTHS.items():
        if len(data.get(key) or "") > limit:
            errors.append(f"{key.capitalize()} must be {limit} characters or fewer.")
    allowed = {"email": ("name", "email"), "phone": ("name", "phone"), "contact": tuple(MAX_LENGTHS)}[kind]
    return {k: v for k, v in data.items() if k in allowed}, errors


def success_message(block: "Block", kind: str) -> str:
    return clean((block.settings or {}).get("success_message")) or DEFAULT_SUCCESS[kind]


def ip_hash(req: "Request", secret: str) -> str | None:
    ip = client_ip(req)
    if not ip:
        return None
    return hashlib.sha256(f"{secret}|{ip}".encode("utf-8")).hexdigest()


def store_submission(
    s: "Session",
    biolink: "BioLink",
    block: "Block",
    kind: str,
    data: dict[str, str],
    req: "Request",
    secret: str = "",
) -> Submission:
    submission = Submission(
        biolink_id=biolink.id,
        block_id=block.id,
        type=kind,
        data=data,
        ip_hash=ip_hash(req, secret),
        country_code=header_country(req),
        created_at=datetime.utcnow(),
    )
    s.add(submission)
    s.flush()
    return submission


# ---------- Manager ----------
def parse_filters(args) -> dict[str, Any]:
    """Type, block and date-range filters from the query string; bad values are dropped."""
    filters: dict[str, Any] = {}
    kind = clean(args.get("type"))
    if kind in SUBMISSION_TYPES:
        filters["type"] = kind
    block_id = parse_int(args.get("block_id"))
    if block_id:
        filters["block_id"] = block_id
    for key in ("date_from", "date_to"):
        try:
            value = parse_date(args.get(key))
        except ValueError:
            value = None
        if value:
            filters[key] = value.isoformat()
    return filters


def query_submissions(s: "Session", biolink: "BioLink", filters: dict[str, Any] | None = None) -> "Query":
    filters = filters or {}
    q = s.query(Submission).filter(Submission.biolink_id == biolink.id)
    if filters.get("type"):
        q = q.filter(Submission.type == filters["type"])
    if filters.get("block_id"):
        q = q.filter(Submission.block_id == filters["block_id"])
    if filters.get("date_from"):
        q = q.filter(Submission.created_at >= datetime.combine(parse_date(filters["date_from"]), time.min))
    if filters.get("date_to"):
        end = datetime.combine(parse_date(filters["date_to"]), time.min) + timedelta(days=1)
        q = q.filter(Submission.created_at < end)
    return q.order_by(Submission.created_at.desc(), Submission.id.desc())


def type_counts(s: "Session", biolink: "BioLink") -> dict[str, int]:
    rows = (
        s.query(Submission.type, func.count(Submission.id))
        .filter(Submission.biolink_id == biolink.id)
        .group_by(Submission.type)
        .all()
    )
    counts = {kind: 0 for kind in SUBMISSION_TYPES}
    counts.update({kind: n for kind, n in rows})
    return counts


def export_rows(submissions: list[Submission], block_names: dict[int, str]) -> list[list[str]]:
    rows = [list(EXPORT_COLUMNS)]
    for sub in submissions:
        rows.append(
            [
                sub.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                SUBMISSION_TYPES.get(sub.type, sub.type),
                block_names.get(sub.block_id, str(sub.block_id)),
                sub.get("name", ""),
                sub.get("email", ""),
                sub.get("phone", ""),
                sub.get("message", ""),
                sub.country_code or "",
            ]
        )
    return rows


def delete_submission(s: "Session", submission: Submission, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="submission.delete",
        entity_type="Submission",
        entity_id=str(submission.id),
        metadata={"biolink_id": submission.biolink_id, "type": submission.type},
    )
    s.delete(submission)
