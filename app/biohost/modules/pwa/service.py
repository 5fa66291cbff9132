from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.pwa.models import Pwa
from app.biohost.utils import clean, flag, is_hex_color, is_http_url, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink


DISPLAY_MODES = ("standalone", "fullscreen", "minimal-ui", "browser")
ORIENTATIONS = ("any", "natural", "portrait", "landscape")
DIRECTIONS = ("ltr", "rtl", "auto")
MAX_SCREENSHOTS = 6
MAX_SHORTCUTS = 4
DEFAULT_INSTALL_PROMPT_DELAY = 30
INSTALL_PROMPT_DELAY_MAX = 300

FIELDS = (
    "name",
    "short_name",
    "description",
    "theme_color",
    "background_color",
    "display",
    "orientation",
    "icon_url",
    "icon_maskable_url",
    "screenshots",
    "shortcuts",
    "start_url",
    "scope",
    "lang",
    "dir",
)


def _url_ok(value: str | None) -> bool:
    return not value or value.startswith("/") or is_http_url(value)


def payload_from_form(form) -> dict[str, Any]:
    """Flatten the PWA form: screenshots are one URL per line; shortcuts come as shortcut_<n>_<field>."""
    screenshots = [line.strip() for line in (form.get("screenshots") or "").splitlines() if line.strip()]
    shortcuts = []
    for i in range(1, MAX_SHORTCUTS + 2):
        name = clean(form.get(f"shortcut_{i}_name"))
        url = clean(form.get(f"shortcut_{i}_url"))
        description = clean(form.get(f"shortcut_{i}_description"))
        if name or url or description:
            shortcuts.append({"name": name, "url": url, "description": description})
    payload = {k: clean(form.get(k)) for k in FIELDS if k not in ("screenshots", "shortcuts")}
    payload["theme_color"] = (payload.get("theme_color") or "#6366f1").lower()
    payload["background_color"] = (payload.get("background_color") or "#ffffff").lower()
    payload["screenshots"] = screenshots
    payload["shortcuts"] = shortcuts
    payload["install_prompt_delay"] = form.get("install_prompt_delay")
    payload["is_enabled"] = flag(form.get("is_enabled"))
    return payload


def validate_pwa_payload(payload: dict) -> list[str]:
    errors = []
    name = clean(payload.get("name"))
    if not name:
        errors.append("App name is required.")
    elif len(name) > 128:
        errors.append("App name must be 128 characters or fewer.")
    if len(clean(payload.get("short_name")) or "") > 32:
        errors.append("Short name must be 32 characters or fewer.")
    if len(clean(payload.get("description")) or "") > 256:
        errors.append("Description must be 256 characters or fewer.")
    for key, label in (("theme_color", "Theme colour"), ("background_color", "Background colour")):
        if not is_hex_color(payload.get(key)):
            errors.append(f"{label} must be a hex colour like #6366f1.")
    if (payload.get("display") or "standalone") not in DISPLAY_MODES:
        errors.append("Display must be one of: " + ", ".join(DISPLAY_MODES))
    if (payload.get("orientation") or "any") not in ORIENTATIONS:
        errors.append("Orientation must be one of: " + ", ".join(ORIENTATIONS))
    if (payload.get("dir") or "auto") not in DIRECTIONS:
        errors.append("Direction must be ltr, rtl or auto.")
    if len(clean(payload.get("lang")) or "") > 8:
        errors.append("Language must be 8 characters or fewer.")
    for key, label in (
        ("icon_url", "Icon URL"),
        ("icon_maskable_url", "Maskable icon URL"),
        ("start_url", "Start URL"),
        ("scope", "Scope"),
    ):
        if not _url_ok(clean(payload.get(key))):
            errors.append(f"{label} must be a path or http(s) URL.")

    screenshots = payload.get("screenshots") or []
    if len(screenshots) > MAX_SCREENSHOTS:
        errors.append(f"At most {MAX_SCREENSHOTS} screenshots are allowed.")
    if any(not is_http_url(u) for u in screenshots):
        errors.append("Screenshots must be http(s) URLs.")

    shortcuts = payload.get("shortcuts") or []
    if len(shortcuts) > MAX_SHORTCUTS:
        errors.append(f"At most {MAX_SHORTCUTS} shortcuts are allowed.")
    for i, sc in enumerate(shortcuts, start=1):
        if not clean(sc.get("name")) or not clean(sc.get("url")):
            errors.append(f"Shortcut {i} needs a name and a URL.")
        elif not _url_ok(clean(sc.get("url"))):
            errors.append(f"Shortcut {i} URL must be a path or http(s) URL.")

    raw_delay = payload.get("install_prompt_delay")
    if raw_delay not in (None, ""):
        delay = parse_int(raw_delay)
        if delay is None or not (0 <= delay <= INSTALL_PROMPT_DELAY_MAX):
            errors.append(f"Install prompt delay must be between 0 and {INSTALL_PROMPT_DELAY_MAX} seconds.")
    return errors


def install_prompt_delay(biolink: "BioLink") -> int:
    value = biolink.get_setting("pwa.install_prompt_delay")
    return value if isinstance(value, int) else DEFAULT_INSTALL_PROMPT_DELAY


def save_pwa(s: "Session", biolink: "BioLink", payload: dict, user: "User") -> Pwa:
    """Create or update the biolink's PWA config. Creating one needs the bio.pwa entitlement."""
    pwa = biolink.pwa
    now = datetime.utcnow()
    created = pwa is None
    if created:
        entitlements.require(s, user, "bio.pwa")
        pwa = Pwa(biolink_id=biolink.id, installs=0, created_at=now)
        biolink.pwa = pwa

    changes: dict[str, Any] = {}
    for key in FIELDS:
        value = payload.get(key)
        if key == "display":
            value = value or "standalone"
        elif key == "orientation":
            value = value or "any"
        elif key == "dir":
            value = value or "auto"
        elif key == "lang":
            value = value or "en-GB"
        elif key in ("screenshots", "shortcuts"):
            value = list(value or [])
        else:
            value = clean(value)
        old = getattr(pwa, key, None)
        if old != value:
            changes[key] = {"old": old, "new": value}
            setattr(pwa, key, value)
    if "is_enabled" in payload:
        pwa.is_enabled = bool(payload["is_enabled"])
    elif created:
        pwa.is_enabled = True
    pwa.updated_at = now

    delay = parse_int(payload.get("install_prompt_delay"))
    if delay is not None:
        settings = dict(biolink.settings or {})
        settings["pwa"] = {**(settings.get("pwa") or {}), "install_prompt_delay": delay}
        biolink.settings = settings

    s.flush()
    record_event(
        s,
        actor=user,
        action="pwa.create" if created else "pwa.edit",
        entity_type="Pwa",
        entity_id=str(pwa.id),
        metadata={"biolink_id": biolink.id, "changes": {k: v for k, v in changes.items() if k != "shortcuts"}},
    )
    return pwa


def set_enabled(s: "Session", pwa: Pwa, enabled: bool, user: "User") -> Pwa:
    pwa.is_enabled = enabled
    pwa.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="pwa.enable" if enabled else "pwa.disable",
        entity_type="Pwa",
        entity_id=str(pwa.id),
        metadata={"biolink_id": pwa.biolink_id},
    )
    return pwa


def enable(s: "Session", pwa: Pwa, user: "User") -> Pwa:
    return set_enabled(s, pwa, True, user)


def disable(s: "Session", pwa: Pwa, user: "User") -> Pwa:
    return set_enabled(s, pwa, False, user)


def delete_pwa(s: "Session", biolink: "BioLink", user: "User") -> None:
    pwa = biolink.pwa
    if pwa is None:
        return
    record_event(
        s,
        actor=user,
        action="pwa.delete",
        entity_type="Pwa",
        entity_id=str(pwa.id),
        metadata={"biolink_id": biolink.id, "name": pwa.name},
    )
    biolink.pwa = None
    settings = dict(biolink.settings or {})
    if "pwa" in settings:
        settings.pop("pwa")
        biolink.settings = settings
    s.flush()


def generate_manifest(biolink: "BioLink", pwa: Pwa) -> dict[str, Any]:
    manifest: dict[str, Any] = {
        "name": pwa.name,
        "short_name": pwa.short_name or pwa.name[:12],
        "description": pwa.description or "",
        "start_url": pwa.start_url or f"/{biolink.url}",
        "scope": pwa.scope or f"/{biolink.url}",
        "display": pwa.display,
        "orientation": pwa.orientation,
        "theme_color": pwa.theme_color,
        "background_color": pwa.background_color,
        "lang": pwa.lang,
        "dir": pwa.dir,
        "icons": [],
    }
    if pwa.icon_url:
        for size in (192, 512):
            manifest["icons"].append(
                {"src": pwa.icon_url, "sizes": f"{size}x{size}", "type": "image/png", "purpose": "any"}
            )
    if pwa.icon_maskable_url:
        manifest["icons"].append(
            {"src": pwa.icon_maskable_url, "sizes": "512x512", "type": "image/png", "purpose": "maskable"}
        )
    if pwa.screenshots:
        manifest["screenshots"] = [{"src": u, "type": "image/png"} for u in pwa.screenshots]
    if pwa.shortcuts:
        manifest["shortcuts"] = [
            {"name": sc.get("name"), "url": sc.get("url"), "description": sc.get("description") or ""}
            for sc in pwa.shortcuts
        ]
    return manifest
