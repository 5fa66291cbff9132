from __future__ import annotations

import copy
import logging
import math
import re
import secrets
import string
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash
from werkzeug.utils import secure_filename

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.biolinks.ics import build_event_settings, validate_event_payload
from app.biohost.modules.biolinks.models import LINK_TYPES, BioLink
from app.biohost.modules.biolinks.vcard import (
    build_vcard_settings,
    validate_vcard_payload,
    validate_vcard_photo,
)
from app.biohost.storage import StorageError, build_storage_key
from app.biohost.utils import clean, flag, get_owned, is_http_url, parse_datetime, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.domains.models import Domain
    from app.biohost.modules.projects.models import Project


logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-z0-9_-]+$")
SLUG_MIN = 3
SLUG_MAX = 256
RANDOM_SLUG_LENGTH = 6
RESERVED_SLUGS = frozenset({"admin", "auth", "static", "health", "healthz", "api", "manifest.json"})
PAGE_SIZE = 20
UNASSIGNED = -1

REDIRECT_TYPES = (301, 302)
PASSWORD_MIN = 4
PASSWORD_MAX = 64

FILE_EXTENSIONS = {
    "image": ("jpg", "jpeg", "png", "svg", "gif", "webp", "avif"),
    "video": ("mp4", "webm"),
    "audio": ("mp3", "m4a", "wav"),
    "document": ("pdf", "zip", "rar", "doc", "docx", "ppt", "pptx", "xls", "xlsx", "odp", "ods"),
}
ALLOWED_FILE_EXTENSIONS = frozenset(ext for group in FILE_EXTENSIONS.values() for ext in group)
FILE_MAX_BYTES = 50 * 1024 * 1024


def entitlement_code_for(link_type: str) -> str:
    return "bio.shortlinks" if link_type == "link" else "bio.pages"


# ---------- Slugs ----------
def normalise_slug(value: str | None) -> str:
    return (value or "").strip().lower()


def slug_available(s: "Session", slug: str, domain_id: int | None, exclude_id: int | None = None) -> bool:
    q = s.query(BioLink.id).filter(BioLink.url == slug)
    if domain_id is None:
        q = q.filter(BioLink.domain_id.is_(None))
    else:
        q = q.filter(BioLink.domain_id == domain_id)
    if exclude_id is not None:
        q = q.filter(BioLink.id != exclude_id)
    return q.first() is None


def validate_slug(s: "Session", slug: str, domain_id: int | None, exclude_id: int | None = None) -> list[str]:
    errors = []
    if len(slug) < SLUG_MIN or len(slug) > SLUG_MAX:
        errors.append(f"URL must be between {SLUG_MIN} and {SLUG_MAX} characters.")
    elif not SLUG_RE.match(slug):
        errors.append("URL may only contain lowercase letters, numbers, dashes and underscores.")
    elif slug in RESERVED_SLUGS:
        errors.append(f"The URL '{slug}' is reserved.")
    elif not slug_available(s, slug, domain_id, exclude_id):
        errors.append(f"The URL '{slug}' is already taken.")
    return errors


def generate_slug(s: "Session", domain_id: int | None = None) -> str:
    alphabet = string.ascii_lowercase + string.digits
    while True:
        slug = "".join(secrets.choice(alphabet) for _ in range(RANDOM_SLUG_LENGTH))
        if slug not in RESERVED_SLUGS and slug_available(s, slug, domain_id):
            return slug


def copy_slug(s: "Session", slug: str, domain_id: int | None) -> str:
    """<slug>-copy, then <slug>-copy-2, -copy-3 ... until free."""
    base = f"{slug[: SLUG_MAX - 5]}-copy"
    if slug_available(s, base, domain_id):
        return base
    n = 2
    while True:
        suffix = f"-{n}"
        candidate = f"{base[: SLUG_MAX - len(suffix)]}{suffix}"
        if slug_available(s, candidate, domain_id):
            return candidate
        n += 1


# ---------- Payload helpers ----------
def _resolve_project(s: "Session", user: "User", raw: Any) -> tuple["Project | None", list[str]]:
    from app.biohost.modules.projects.models import Project

    project_id = parse_int(raw)
    if project_id is None or project_id == UNASSIGNED:
        return None, []
    project = get_owned(s, Project, project_id, user)
    if project is None:
        return None, ["Project not found."]
    return project, []


def _resolve_domain(s: "Session", user: "User", raw: Any) -> tuple["Domain | None", list[str]]:
    from app.biohost.modules.domains.models import Domain

    domain_id = parse_int(raw)
    if domain_id is None:
        return None, []
    domain = get_owned(s, Domain, domain_id, user)
    if domain is None:
        return None, ["Domain not found."]
    if not (domain.is_verified and domain.is_enabled):
        return None, [f"Domain {domain.host} must be verified and enabled before use."]
    return domain, []


def _validate_dates(payload: dict) -> list[str]:
    errors = []
    try:
        start = parse_datetime(payload.get("start_date"))
        end = parse_datetime(payload.get("end_date"))
    except ValueError:
        return ["Dates must be YYYY-MM-DD or YYYY-MM-DDTHH:MM."]
    if start and end and end < start:
        errors.append("End date must be after the start date.")
    return errors


def _validate_password(raw: Any) -> list[str]:
    password = clean(raw)
    if password and not (PASSWORD_MIN <= len(password) <= PASSWORD_MAX):
        return [f"Password must be between {PASSWORD_MIN} and {PASSWORD_MAX} characters."]
    return []


def validate_biolink_payload(s: "Session", payload: dict, user: "User", link_type: str = "biolink") -> list[str]:
    """Common checks for every link type: slug, project, domain and dates."""
    errors = []
    if link_type not in LINK_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(LINK_TYPES)}")
    _project, project_errors = _resolve_project(s, user, payload.get("project_id"))
    errors.extend(project_errors)
    domain, domain_errors = _resolve_domain(s, user, payload.get("domain_id"))
    errors.extend(domain_errors)
    slug = normalise_slug(payload.get("url"))
    if slug and not domain_errors:
        errors.extend(validate_slug(s, slug, domain.id if domain else None))
    errors.extend(_validate_dates(payload))
    return errors


def validate_short_link_payload(s: "Session", payload: dict, user: "User") -> list[str]:
    return validate_biolink_payload(s, payload, user, "link") + validate_short_link_settings(payload)


def validate_short_link_settings(payload: dict) -> list[str]:
    errors = []
    location = clean(payload.get("location_url"))
    if not location:
        errors.append("Destination URL is required.")
    elif not is_http_url(location):
        errors.append("Destination URL must be a valid http(s) URL.")
    elif len(location) > 2048:
        errors.append("Destination URL must be 2048 characters or fewer.")
    redirect_type = parse_int(payload.get("redirect_type"), 302)
    if redirect_type not in REDIRECT_TYPES:
        errors.append("Redirect type must be 301 or 302.")
    errors.extend(_validate_password(payload.get("password")))
    if flag(payload.get("deep_link_enabled")):
        for key, label in (("deep_link_ios", "iOS link"), ("deep_link_android", "Android link")):
            if not clean(payload.get(key)):
                errors.append(f"Deep link {label} is required.")
        fallback = clean(payload.get("deep_link_fallback"))
        if fallback and not is_http_url(fallback):
            errors.append("Deep link fallback must be a valid http(s) URL.")
    return errors


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def validate_file_upload(filename: str | None, size_bytes: int) -> list[str]:
    errors = []
    if not filename:
        return ["Please select a file to upload."]
    if file_extension(filename) not in ALLOWED_FILE_EXTENSIONS:
        errors.append(f"File type not allowed. Allowed: {', '.join(sorted(ALLOWED_FILE_EXTENSIONS))}")
    if size_bytes > FILE_MAX_BYTES:
        errors.append("File must be 50MB or smaller.")
    return errors


def validate_static_payload(payload: dict) -> list[str]:
    errors = []
    title = clean(payload.get("title"))
    if not title:
        errors.append("Title is required.")
    elif len(title) > 256:
        errors.append("Title must be 256 characters or fewer.")
    return errors


def build_short_link_settings(payload: dict, existing: dict | None = None) -> dict[str, Any]:
    """Short-link settings; a blank password keeps the stored hash unless remove_password is set."""
    existing = existing or {}
    password = clean(payload.get("password"))
    if password:
        password_hash = generate_password_hash(password)
    elif flag(payload.get("remove_password")):
        password_hash = None
    else:
        password_hash = existing.get("password")
    return {
        "redirect_type": parse_int(payload.get("redirect_type"), 302),
        "password": password_hash,
        "password_hint": clean(payload.get("password_hint")),
        "cloaking": {
            "enabled": flag(payload.get("cloaking_enabled")),
            "title": clean(payload.get("cloaking_title")),
        },
        "sensitive": {
            "enabled": flag(payload.get("sensitive_enabled")),
            "age_gate": flag(payload.get("sensitive_age_gate")),
        },
        "deep_link": {
            "enabled": flag(payload.get("deep_link_enabled")),
            "ios": clean(payload.get("deep_link_ios")),
            "android": clean(payload.get("deep_link_android")),
            "fallback": clean(payload.get("deep_link_fallback")),
        },
        "splash_page": {
            "enabled": flag(payload.get("splash_enabled")),
            "title": clean(payload.get("splash_title")),
            "message": clean(payload.get("splash_message")),
            "delay": parse_int(payload.get("splash_delay"), 5),
        },
    }


def build_static_settings(payload: dict) -> dict[str, Any]:
    return {
        "title": clean(payload.get("title")),
        "html": payload.get("html") or "",
        "css": payload.get("css") or "",
    }


def build_file_password_settings(payload: dict, existing: dict | None = None) -> dict[str, Any]:
    """File-link password edit; same keep/remove rules as short links."""
    existing = existing or {}
    password = clean(payload.get("password"))
    if password:
        return {"password_protected": True, "password": generate_password_hash(password)}
    if flag(payload.get("remove_password")):
        return {"password_protected": False, "password": None}
    return {
        "password_protected": bool(existing.get("password_protected")),
        "password": existing.get("password"),
    }


def password_hash_for(biolink: BioLink) -> str | None:
    if biolink.type == "file":
        if not biolink.get_setting("password_protected"):
            return None
        return biolink.get_setting("password")
    return biolink.get_setting("password")


def check_biolink_password(biolink: BioLink, password: str | None) -> bool:
    stored = password_hash_for(biolink)
    if not stored:
        return True
    return bool(password) and check_password_hash(stored, password)


# ---------- Create ----------
def _new_biolink(
    s: "Session",
    payload: dict,
    user: "User",
    link_type: str,
    settings: dict | None = None,
) -> BioLink:
    entitlements.require(s, user, entitlement_code_for(link_type))
    project, _ = _resolve_project(s, user, payload.get("project_id"))
    domain, _ = _resolve_domain(s, user, payload.get("domain_id"))
    domain_id = domain.id if domain else None
    slug = normalise_slug(payload.get("url")) or generate_slug(s, domain_id)

    now = datetime.utcnow()
    biolink = BioLink(
        user_id=user.id,
        project_id=project.id if project else None,
        domain_id=domain_id,
        type=link_type,
        url=slug,
        location_url=clean(payload.get("location_url")) if link_type == "link" else None,
        settings=settings or {},
        clicks=0,
        unique_clicks=0,
        start_date=parse_datetime(payload.get("start_date")),
        end_date=parse_datetime(payload.get("end_date")),
        is_enabled=True if payload.get("is_enabled") is None else flag(payload.get("is_enabled")),
        created_at=now,
        updated_at=now,
    )
    s.add(biolink)
    s.flush()

    record_event(
        s,
        actor=user,
        action="biolink.create",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"url": biolink.url, "type": link_type},
    )
    return biolink


def create_biolink(s: "Session", payload: dict, user: "User") -> BioLink:
    """Create a bio page (type biolink)."""
    return _new_biolink(s, payload, user, "biolink")


def create_short_link(s: "Session", payload: dict, user: "User") -> BioLink:
    return _new_biolink(s, payload, user, "link", build_short_link_settings(payload))


def create_file_link(
    s: "Session",
    payload: dict,
    user: "User",
    file_bytes: bytes,
    filename: str,
    content_type: str,
) -> BioLink:
    from flask import current_app
    from app.biohost.storage import storage_from_config

    biolink = _new_biolink(s, payload, user, "file")
    safe_name = secure_filename(filename) or "upload.bin"
    storage_key = build_storage_key(biolink.id, "files", safe_name)
    storage = storage_from_config(current_app.config)
    storage.put_bytes(storage_key, file_bytes, content_type=content_type)

    password = clean(payload.get("password"))
    biolink.settings = {
        "file_path": storage_key,
        "file_name": safe_name,
        "file_size": len(file_bytes),
        "file_extension": file_extension(safe_name),
        "mime_type": content_type or "application/octet-stream",
        "password_protected": bool(password),
        "password": generate_password_hash(password) if password else None,
    }
    return biolink


def create_vcard(
    s: "Session",
    payload: dict,
    user: "User",
    photo: tuple[bytes, str, str] | None = None,
) -> BioLink:
    """photo is (bytes, filename, content_type) when one was uploaded."""
    biolink = _new_biolink(s, payload, user, "vcard")
    vcard = build_vcard_settings(payload)
    if photo is not None:
        vcard["photo_path"] = store_vcard_photo(biolink, *photo)
    biolink.settings = {"vcard": vcard}
    return biolink


def store_vcard_photo(biolink: BioLink, data: bytes, filename: str, content_type: str) -> str:
    from flask import current_app
    from app.biohost.storage import storage_from_config

    key = build_storage_key(biolink.id, "photos", filename, default="photo.jpg")
    storage_from_config(current_app.config).put_bytes(key, data, content_type=content_type)
    return key


def create_event(s: "Session", payload: dict, user: "User") -> BioLink:
    return _new_biolink(s, payload, user, "event", {"event": build_event_settings(payload)})


def create_static_page(s: "Session", payload: dict, user: "User") -> BioLink:
    return _new_biolink(s, payload, user, "static", {"static": build_static_settings(payload)})


# ---------- Update ----------
def update_biolink(
    s: "Session",
    biolink: BioLink,
    payload: dict,
    user: "User",
    settings: dict | None = None,
) -> BioLink:
    """
    Apply edits from the settings form. Only keys present in payload are
    touched; settings replaces the given top-level settings keys.
    """
    changes: dict[str, Any] = {}

    if "url" in payload:
        new_url = normalise_slug(payload.get("url"))
        if new_url and new_url != biolink.url:
            changes["url"] = {"old": biolink.url, "new": new_url}
            biolink.url = new_url

    if "location_url" in payload and biolink.type == "link":
        new_location = clean(payload.get("location_url"))
        if new_location and new_location != biolink.location_url:
            changes["location_url"] = {"old": biolink.location_url, "new": new_location}
            biolink.location_url = new_location

    if "is_enabled" in payload:
        new_enabled = flag(payload.get("is_enabled"))
        if new_enabled != biolink.is_enabled:
            changes["is_enabled"] = {"old": biolink.is_enabled, "new": new_enabled}
            biolink.is_enabled = new_enabled

    for key in ("start_date", "end_date"):
        if key in payload:
            new_value = parse_datetime(payload.get(key))
            if new_value != getattr(biolink, key):
                changes[key] = {"old": str(getattr(biolink, key)), "new": str(new_value)}
                setattr(biolink, key, new_value)

    if "project_id" in payload:
        project, _ = _resolve_project(s, user, payload.get("project_id"))
        new_project_id = project.id if project else None
        if new_project_id != biolink.project_id:
            changes["project_id"] = {"old": biolink.project_id, "new": new_project_id}
            biolink.project_id = new_project_id

    if settings:
        merged = dict(biolink.settings or {})
        merged.update(settings)
        if merged != (biolink.settings or {}):
            changes["settings"] = sorted(settings.keys())
            biolink.settings = merged

    biolink.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="biolink.edit",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"url": biolink.url, "changes": changes},
    )
    return biolink


def validate_biolink_update(s: "Session", biolink: BioLink, payload: dict, user: "User") -> list[str]:
    errors = []
    slug = normalise_slug(payload.get("url"))
    if "url" in payload and not slug:
        errors.append("URL is required.")
    elif slug and slug != biolink.url:
        errors.extend(validate_slug(s, slug, biolink.domain_id, exclude_id=biolink.id))
    if biolink.type == "link" and "location_url" in payload:
        location = clean(payload.get("location_url"))
        if not location or not is_http_url(location):
            errors.append("Destination URL must be a valid http(s) URL.")
    _project, project_errors = _resolve_project(s, user, payload.get("project_id"))
    errors.extend(project_errors)
    errors.extend(_validate_dates(payload))
    return errors


def toggle_biolink(s: "Session", biolink: BioLink, user: "User") -> BioLink:
    biolink.is_enabled = not biolink.is_enabled
    biolink.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="biolink.toggle",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"url": biolink.url, "is_enabled": biolink.is_enabled},
    )
    return biolink


def stored_file_keys(biolink: BioLink) -> list[str]:
    keys = [
        biolink.get_setting("file_path"),
        biolink.get_setting("vcard.photo_path"),
        biolink.get_setting("qr_code.logo_path"),
    ]
    return [k for k in keys if k]


def delete_biolink(s: "Session", biolink: BioLink, user: "User") -> None:
    """Delete the row (blocks, clicks, submissions, handlers and PWA cascade) and its stored files."""
    from flask import current_app
    from app.biohost.modules.analytics.models import Click
    from app.biohost.modules.submissions.models import Submission
    from app.biohost.storage import storage_from_config

    keys = stored_file_keys(biolink)
    record_event(
        s,
        actor=user,
        action="biolink.delete",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"url": biolink.url, "type": biolink.type},
    )
    biolink.pixels = []
    s.query(Click).filter(Click.biolink_id == biolink.id).delete(synchronize_session=False)
    s.query(Submission).filter(Submission.biolink_id == biolink.id).delete(synchronize_session=False)
    s.delete(biolink)
    s.flush()

    if keys:
        storage = storage_from_config(current_app.config)
        for key in keys:
            try:
                storage.delete(key)
            except (StorageError, OSError) as e:
                logger.warning("Could not remove stored file %s for biolink %s: %s", key, biolink.id, e)


def duplicate_biolink(s: "Session", biolink: BioLink, user: "User") -> BioLink:
    from flask import current_app
    from app.biohost.modules.editor.models import Block
    from app.biohost.storage import storage_from_config

    entitlements.require(s, user, entitlement_code_for(biolink.type))
    now = datetime.utcnow()
    clone = BioLink(
        user_id=user.id,
        project_id=biolink.project_id,
        domain_id=biolink.domain_id,
        theme_id=biolink.theme_id,
        type=biolink.type,
        url=copy_slug(s, biolink.url, biolink.domain_id),
        location_url=biolink.location_url,
        settings=copy.deepcopy(biolink.settings or {}),
        clicks=0,
        unique_clicks=0,
        start_date=biolink.start_date,
        end_date=biolink.end_date,
        is_enabled=biolink.is_enabled,
        created_at=now,
        updated_at=now,
    )
    s.add(clone)
    s.flush()

    for block in biolink.blocks:
        clone.blocks.append(
            Block(
                type=block.type,
                region=block.region,
                order=block.order,
                location_url=block.location_url,
                settings=copy.deepcopy(block.settings or {}),
                breakpoint_visibility=list(block.breakpoint_visibility) if block.breakpoint_visibility else None,
                clicks=0,
                start_date=block.start_date,
                end_date=block.end_date,
                is_enabled=block.is_enabled,
                created_at=now,
                updated_at=now,
            )
        )
    clone.pixels = list(biolink.pixels)

    # Stored files are copied so deleting either record leaves the other intact.
    keys = stored_file_keys(biolink)
    if keys:
        storage = storage_from_config(current_app.config)
        settings = copy.deepcopy(clone.settings)
        for old_key in keys:
            new_key = old_key.replace(f"biolinks/{biolink.id}/", f"biolinks/{clone.id}/", 1)
            fobj = storage.open(old_key)
            try:
                storage.put_bytes(new_key, fobj.read())
            finally:
                fobj.close()
            if settings.get("file_path") == old_key:
                settings["file_path"] = new_key
            if (settings.get("vcard") or {}).get("photo_path") == old_key:
                settings["vcard"]["photo_path"] = new_key
            if (settings.get("qr_code") or {}).get("logo_path") == old_key:
                settings["qr_code"]["logo_path"] = new_key
        clone.settings = settings

    record_event(
        s,
        actor=user,
        action="biolink.duplicate",
        entity_type="BioLink",
        entity_id=str(clone.id),
        metadata={"source_id": biolink.id, "url": clone.url},
    )
    return clone


def move_biolink(s: "Session", biolink: BioLink, project_id: Any, user: "User") -> BioLink:
    """Assign to an owned project; -1 or empty means unassigned."""
    project, errors = _resolve_project(s, user, project_id)
    if errors:
        raise ValueError(errors[0])
    old = biolink.project_id
    biolink.project_id = project.id if project else None
    biolink.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="biolink.move",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"url": biolink.url, "old_project_id": old, "new_project_id": biolink.project_id},
    )
    return biolink


# ---------- Queries ----------
def list_biolinks(
    s: "Session",
    user: "User",
    *,
    search: str | None = None,
    status: str | None = None,
    project: Any = None,
    link_type: str | None = None,
    page: int = 1,
    per_page: int = PAGE_SIZE,
) -> dict[str, Any]:
    q = s.query(BioLink).filter(BioLink.user_id == user.id)

    search = clean(search)
    if search:
        like = f"%{search}%"
        q = q.filter((BioLink.url.ilike(like)) | (BioLink.location_url.ilike(like)))
    if status == "enabled":
        q = q.filter(BioLink.is_enabled.is_(True))
    elif status == "disabled":
        q = q.filter(BioLink.is_enabled.is_(False))
    project_id = parse_int(project)
    if project_id == UNASSIGNED:
        q = q.filter(BioLink.project_id.is_(None))
    elif project_id is not None:
        q = q.filter(BioLink.project_id == project_id)
    if link_type:
        q = q.filter(BioLink.type == link_type)

    total = q.count()
    pages = max(math.ceil(total / per_page), 1)
    page = min(max(page or 1, 1), pages)
    items = q.order_by(BioLink.created_at.desc(), BioLink.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": items,
        "total": total,
        "page": page,
        "pages": pages,
        "stats": biolink_stats(s, user),
    }


def biolink_stats(s: "Session", user: "User") -> dict[str, int]:
    """Totals over the owner's unfiltered set."""
    row = (
        s.query(
            func.count(BioLink.id),
            func.coalesce(func.sum(BioLink.clicks), 0),
        )
        .filter(BioLink.user_id == user.id)
        .one()
    )
    enabled = (
        s.query(func.count(BioLink.id))
        .filter(BioLink.user_id == user.id, BioLink.is_enabled.is_(True))
        .scalar()
        or 0
    )
    return {"total": int(row[0] or 0), "enabled": int(enabled), "clicks": int(row[1] or 0)}


def type_counts(s: "Session", user: "User") -> dict[str, int]:
    counts = {t: 0 for t in LINK_TYPES}
    rows = s.query(BioLink.type, func.count(BioLink.id)).filter(BioLink.user_id == user.id).group_by(BioLink.type).all()
    for link_type, n in rows:
        counts[link_type] = int(n)
    return counts


def entitlement_summary(s: "Session", user: "User") -> list[entitlements.EntitlementCheck]:
    return entitlements.summary(s, user, ("bio.pages", "bio.shortlinks"))


def validate_vcard(payload: dict, photo: tuple[bytes, str, str] | None = None) -> list[str]:
    errors = validate_vcard_payload(payload)
    if photo is not None:
        errors.extend(validate_vcard_photo(photo[1], len(photo[0])))
    return errors


def validate_event(payload: dict) -> list[str]:
    return validate_event_payload(payload)
