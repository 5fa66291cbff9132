from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable

from markupsafe import Markup, escape

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.pixels import snippets
from app.biohost.modules.pixels.models import Pixel
from app.biohost.utils import clean, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink


PIXEL_TYPES = {
    "facebook": "Facebook Pixel",
    "google_analytics": "Google Analytics",
    "google_tag_manager": "Google Tag Manager",
    "google_ads": "Google Ads",
    "tiktok": "TikTok Pixel",
    "twitter": "Twitter Pixel",
    "pinterest": "Pinterest Tag",
    "linkedin": "LinkedIn Insight",
    "snapchat": "Snapchat Pixel",
    "quora": "Quora Pixel",
    "bing": "Microsoft/Bing UET",
}


def type_label(pixel: Pixel) -> str:
    return PIXEL_TYPES.get(pixel.type, pixel.type.title())


def validate_pixel_payload(payload: dict) -> list[str]:
    errors = []
    pixel_type = clean(payload.get("type"))
    if pixel_type not in PIXEL_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(PIXEL_TYPES)}")
    name = clean(payload.get("name"))
    if not name:
        errors.append("Name is required.")
    elif len(name) > 64:
        errors.append("Name must be 64 characters or fewer.")
    pixel_id = clean(payload.get("pixel_id"))
    if not pixel_id:
        errors.append("Pixel ID is required.")
    elif len(pixel_id) > 128:
        errors.append("Pixel ID must be 128 characters or fewer.")
    return errors


def create_pixel(s: "Session", payload: dict, user: "User") -> Pixel:
    entitlements.require(s, user, "bio.pixels")
    now = datetime.utcnow()
    pixel = Pixel(
        user_id=user.id,
        type=clean(payload.get("type")),
        name=clean(payload.get("name")),
        pixel_id=clean(payload.get("pixel_id")),
        created_at=now,
        updated_at=now,
    )
    s.add(pixel)
    s.flush()

    record_event(
        s,
        actor=user,
        action="pixel.create",
        entity_type="Pixel",
        entity_id=str(pixel.id),
        metadata={"name": pixel.name, "type": pixel.type},
    )
    return pixel


def update_pixel(s: "Session", pixel: Pixel, payload: dict, user: "User") -> Pixel:
    changes = {}
    for key in ("type", "name", "pixel_id"):
        new_value = clean(payload.get(key))
        if new_value and new_value != getattr(pixel, key):
            changes[key] = {"old": getattr(pixel, key), "new": new_value}
            setattr(pixel, key, new_value)
    pixel.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="pixel.edit",
        entity_type="Pixel",
        entity_id=str(pixel.id),
        metadata={"name": pixel.name, "changes": changes},
    )
    return pixel


def delete_pixel(s: "Session", pixel: Pixel, user: "User") -> None:
    attached = len(pixel.biolinks)
    pixel.biolinks = []
    record_event(
        s,
        actor=user,
        action="pixel.delete",
        entity_type="Pixel",
        entity_id=str(pixel.id),
        metadata={"name": pixel.name, "detached_from": attached},
    )
    s.delete(pixel)
    s.flush()


def set_biolink_pixels(s: "Session", biolink: "BioLink", pixel_ids: Iterable[Any], user: "User") -> list[Pixel]:
    """Replace the page's pixel set; ids the user does not own are ignored."""
    ids = {i for i in (parse_int(p) for p in pixel_ids) if i is not None}
    pixels = []
    if ids:
        pixels = (
            s.query(Pixel)
            .filter(Pixel.user_id == user.id, Pixel.id.in_(ids))
            .order_by(Pixel.id.asc())
            .all()
        )
    old = sorted(p.id for p in biolink.pixels)
    biolink.pixels = pixels
    biolink.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="biolink.pixels",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"old": old, "new": [p.id for p in pixels]},
    )
    return pixels


def list_pixels(s: "Session", user: "User") -> list[Pixel]:
    return s.query(Pixel).filter(Pixel.user_id == user.id).order_by(Pixel.name.asc()).all()


def render_head(pixel: Pixel) -> Markup:
    template = snippets.HEAD.get(pixel.type)
    if not template:
        return Markup("")
    return Markup(template.replace("__ID__", str(escape(pixel.pixel_id))))


def render_body(pixel: Pixel) -> Markup:
    template = snippets.BODY.get(pixel.type)
    if not template:
        return Markup("")
    return Markup(template.replace("__ID__", str(escape(pixel.pixel_id))))
