from __future__ import annotations

import copy
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote_plus

from sqlalchemy import or_

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.themes.models import CATEGORIES, Theme, ThemeFavourite
from app.biohost.utils import clean, deep_merge, is_hex_color

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink


FONTS = (
    "Inter",
    "Roboto",
    "Open Sans",
    "Lato",
    "Montserrat",
    "Poppins",
    "Playfair Display",
    "Merriweather",
    "Source Code Pro",
)
BORDER_RADII = ("0", "4px", "8px", "12px", "16px", "9999px")
BACKGROUND_TYPES = ("color", "gradient")

DEFAULT_SETTINGS: dict[str, Any] = {
    "background": {
        "type": "color",
        "color": "#ffffff",
        "gradient_start": "#ffffff",
        "gradient_end": "#f3f4f6",
    },
    "text_color": "#000000",
    "button": {
        "background_color": "#000000",
        "text_color": "#ffffff",
        "border_radius": "8px",
        "border_width": "0",
        "border_color": None,
    },
    "font_family": "Inter",
}


class ThemeError(RuntimeError):
    pass


def default_settings() -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_SETTINGS)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "theme"


def unique_slug(s: "Session", name: str) -> str:
    base = slugify(name)[:56]
    slug = base
    n = 2
    while s.query(Theme.id).filter(Theme.slug == slug).first() is not None:
        slug = f"{base}-{n}"
        n += 1
    return slug


# ---------- Settings ----------
def settings_from_form(payload: dict) -> dict[str, Any]:
    return {
        "background": {
            "type": clean(payload.get("background_type")) or "color",
            "color": clean(payload.get("background_color")) or DEFAULT_SETTINGS["background"]["color"],
            "gradient_start": clean(payload.get("gradient_start")) or DEFAULT_SETTINGS["background"]["gradient_start"],
            "gradient_end": clean(payload.get("gradient_end")) or DEFAULT_SETTINGS["background"]["gradient_end"],
        },
        "text_color": clean(payload.get("text_color")) or DEFAULT_SETTINGS["text_color"],
        "button": {
            "background_color": clean(payload.get("button_background_color")) or DEFAULT_SETTINGS["button"]["background_color"],
            "text_color": clean(payload.get("button_text_color")) or DEFAULT_SETTINGS["button"]["text_color"],
            "border_radius": clean(payload.get("button_border_radius")) or DEFAULT_SETTINGS["button"]["border_radius"],
            "border_width": clean(payload.get("button_border_width")) or "0",
            "border_color": clean(payload.get("button_border_color")),
        },
        "font_family": clean(payload.get("font_family")) or DEFAULT_SETTINGS["font_family"],
    }


def validate_theme_settings(settings: dict) -> list[str]:
    errors = []
    bg = settings.get("background") or {}
    if bg.get("type") not in BACKGROUND_TYPES:
        errors.append("Background type must be color or gradient.")
    for key in ("color", "gradient_start", "gradient_end"):
        if bg.get(key) and not is_hex_color(bg[key]):
            errors.append(f"Background {key.replace('_', ' ')} must be a hex colour.")
    if not is_hex_color(settings.get("text_color")):
        errors.append("Text colour must be a hex colour.")
    button = settings.get("button") or {}
    for key in ("background_color", "text_color"):
        if not is_hex_color(button.get(key)):
            errors.append(f"Button {key.replace('_', ' ')} must be a hex colour.")
    if button.get("border_color") and not is_hex_color(button["border_color"]):
        errors.append("Button border colour must be a hex colour.")
    if button.get("border_radius") not in BORDER_RADII:
        errors.append(f"Border radius must be one of: {', '.join(BORDER_RADII)}")
    if settings.get("font_family") not in FONTS:
        errors.append(f"Font must be one of: {', '.join(FONTS)}")
    return errors


def validate_theme_payload(payload: dict) -> list[str]:
    errors = []
    name = clean(payload.get("name"))
    if not name:
        errors.append("Name is required.")
    elif len(name) > 64:
        errors.append("Name must be 64 characters or fewer.")
    category = clean(payload.get("category"))
    if category and category not in CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(CATEGORIES)}")
    errors.extend(validate_theme_settings(settings_from_form(payload)))
    return errors


def css_variables(settings: dict | None) -> dict[str, str]:
    st = deep_merge(DEFAULT_SETTINGS, settings or {})
    bg = st["background"]
    button = st["button"]
    return {
        "--biolink-bg": bg.get("color") or "#ffffff",
        "--biolink-bg-type": bg.get("type") or "color",
        "--biolink-bg-gradient-start": bg.get("gradient_start") or bg.get("color") or "#ffffff",
        "--biolink-bg-gradient-end": bg.get("gradient_end") or bg.get("color") or "#ffffff",
        "--biolink-text": st.get("text_color") or "#000000",
        "--biolink-btn-bg": button.get("background_color") or "#000000",
        "--biolink-btn-text": button.get("text_color") or "#ffffff",
        "--biolink-btn-radius": button.get("border_radius") or "8px",
        "--biolink-btn-border-width": str(button.get("border_width") or "0"),
        "--biolink-btn-border-color": button.get("border_color") or "transparent",
        "--biolink-font": f"{st.get('font_family') or 'Inter'}, sans-serif",
    }


def css_string(settings: dict | None) -> str:
    return "; ".join(f"{k}: {v}" for k, v in css_variables(settings).items())


def background_css(settings: dict | None) -> str:
    bg = deep_merge(DEFAULT_SETTINGS, settings or {})["background"]
    if bg.get("type") == "gradient":
        return f"linear-gradient(135deg, {bg.get('gradient_start')}, {bg.get('gradient_end')})"
    return bg.get("color") or "#ffffff"


def font_import_url(settings: dict | None) -> str | None:
    family = (settings or {}).get("font_family") or "Inter"
    if family == "Inter":
        return None
    return f"https://fonts.googleapis.com/css2?family={quote_plus(family)}:wght@400;500;600;700&display=swap"


def effective_theme(biolink: "BioLink") -> dict[str, Any]:
    if biolink.theme is not None and biolink.theme.settings:
        return deep_merge(DEFAULT_SETTINGS, biolink.theme.settings)
    inline = biolink.get_setting("theme")
    if isinstance(inline, dict) and inline:
        return deep_merge(DEFAULT_SETTINGS, inline)
    return default_settings()


# ---------- Listing ----------
def _visible(theme: Theme, user: "User") -> bool:
    if theme.is_system:
        return theme.is_active
    return theme.user_id == user.id


def _annotate(themes: list[Theme], user: "User", favourite_ids: set[int]) -> list[Theme]:
    premium = entitlements.has_premium_access(user)
    for t in themes:
        t.is_locked = bool(t.is_premium and not premium)
        t.is_favourited = t.id in favourite_ids
    return themes


def favourite_ids(s: "Session", user: "User") -> set[int]:
    return {row[0] for row in s.query(ThemeFavourite.theme_id).filter(ThemeFavourite.user_id == user.id).all()}


def available_themes(
    s: "Session",
    user: "User",
    *,
    category: str | None = None,
    search: str | None = None,
    gallery_only: bool = False,
) -> list[Theme]:
    """System themes by sort order, then the user's own by name; favourites first."""
    system_q = s.query(Theme).filter(Theme.is_system.is_(True), Theme.is_active.is_(True))
    custom_q = s.query(Theme).filter(Theme.is_system.is_(False), Theme.user_id == user.id)
    if gallery_only:
        system_q = system_q.filter(Theme.is_gallery.is_(True))
    category = clean(category)
    if category:
        system_q = system_q.filter(Theme.category == category)
        custom_q = custom_q.filter(Theme.category == category)
    search = clean(search)
    if search:
        like = f"%{search}%"
        system_q = system_q.filter(or_(Theme.name.ilike(like), Theme.description.ilike(like)))
        custom_q = custom_q.filter(or_(Theme.name.ilike(like), Theme.description.ilike(like)))

    themes = system_q.order_by(Theme.sort_order.asc(), Theme.id.asc()).all()
    themes += custom_q.order_by(Theme.name.asc()).all()
    favs = favourite_ids(s, user)
    _annotate(themes, user, favs)
    # stable sort keeps the order within each group
    return sorted(themes, key=lambda t: not t.is_favourited)


def get_visible_theme(s: "Session", theme_id: Any, user: "User") -> Theme | None:
    try:
        theme = s.get(Theme, int(theme_id))
    except (TypeError, ValueError):
        return None
    if theme is None or not _visible(theme, user):
        return None
    _annotate([theme], user, favourite_ids(s, user))
    return theme


# ---------- Operations ----------
def apply_theme(s: "Session", biolink: "BioLink", theme: Theme, user: "User") -> "BioLink":
    if not _visible(theme, user):
        raise ThemeError("Theme not found.")
    _annotate([theme], user, set())
    if theme.is_locked:
        raise ThemeError(f"{theme.name} is a premium theme. Upgrade to use it.")
    old = biolink.theme_id
    biolink.theme_id = theme.id
    biolink.theme = theme
    biolink.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="biolink.theme_apply",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"old_theme_id": old, "theme_id": theme.id, "theme": theme.name},
    )
    return biolink


def remove_theme(s: "Session", biolink: "BioLink", user: "User") -> "BioLink":
    old = biolink.theme_id
    biolink.theme_id = None
    biolink.theme = None
    biolink.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="biolink.theme_remove",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"old_theme_id": old},
    )
    return biolink


def create_custom_theme(s: "Session", payload: dict, user: "User", settings: dict | None = None) -> Theme:
    entitlements.require(s, user, "bio.themes.custom")
    now = datetime.utcnow()
    name = clean(payload.get("name"))
    theme = Theme(
        user_id=user.id,
        name=name,
        slug=unique_slug(s, clean(payload.get("slug")) or name),
        settings=settings if settings is not None else settings_from_form(payload),
        is_system=False,
        is_premium=False,
        is_gallery=False,
        is_active=True,
        category=clean(payload.get("category")),
        description=clean(payload.get("description")),
        sort_order=0,
        created_at=now,
        updated_at=now,
    )
    s.add(theme)
    s.flush()
    record_event(
        s,
        actor=user,
        action="theme.create",
        entity_type="Theme",
        entity_id=str(theme.id),
        metadata={"name": theme.name},
    )
    return theme


def _require_owned_custom(theme: Theme, user: "User") -> None:
    if theme.is_system or theme.user_id != user.id:
        raise ThemeError("Only your own custom themes can be changed.")


def update_custom_theme(s: "Session", theme: Theme, payload: dict, user: "User") -> Theme:
    _require_owned_custom(theme, user)
    changes: dict[str, Any] = {}
    new_name = clean(payload.get("name"))
    if new_name and new_name != theme.name:
        changes["name"] = {"old": theme.name, "new": new_name}
        theme.name = new_name
    for key in ("category", "description"):
        new_value = clean(payload.get(key))
        if new_value != getattr(theme, key):
            changes[key] = {"old": getattr(theme, key), "new": new_value}
            setattr(theme, key, new_value)
    new_settings = settings_from_form(payload)
    if new_settings != theme.settings:
        changes["settings"] = True
        theme.settings = new_settings
    theme.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="theme.edit",
        entity_type="Theme",
        entity_id=str(theme.id),
        metadata={"name": theme.name, "changes": changes},
    )
    return theme


def delete_custom_theme(s: "Session", theme: Theme, user: "User") -> None:
    from app.biohost.modules.biolinks.models import BioLink

    _require_owned_custom(theme, user)
    s.query(BioLink).filter(BioLink.theme_id == theme.id).update({BioLink.theme_id: None}, synchronize_session="fetch")
    s.query(ThemeFavourite).filter(ThemeFavourite.theme_id == theme.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="theme.delete",
        entity_type="Theme",
        entity_id=str(theme.id),
        metadata={"name": theme.name},
    )
    s.delete(theme)
    s.flush()


def duplicate_theme(s: "Session", theme: Theme, user: "User") -> Theme:
    if not _visible(theme, user):
        raise ThemeError("Theme not found.")
    _annotate([theme], user, set())
    if theme.is_locked:
        raise ThemeError(f"{theme.name} is a premium theme. Upgrade to use it.")
    return create_custom_theme(
        s,
        {"name": f"{theme.name} (Copy)"[:64], "category": theme.category, "description": theme.description},
        user,
        settings=copy.deepcopy(theme.settings or {}),
    )


def toggle_favourite(s: "Session", theme: Theme, user: "User") -> bool:
    """Returns True when the theme is now a favourite."""
    row = (
        s.query(ThemeFavourite)
        .filter(ThemeFavourite.user_id == user.id, ThemeFavourite.theme_id == theme.id)
        .one_or_none()
    )
    if row is not None:
        s.delete(row)
        s.flush()
        return False
    s.add(ThemeFavourite(user_id=user.id, theme_id=theme.id, created_at=datetime.utcnow()))
    s.flush()
    return True
