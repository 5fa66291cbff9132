from __future__ import annotations

import base64
import io
import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

import qrcode
import qrcode.image.svg
from PIL import Image
from qrcode.image.styledpil import StyledPilImage
from qrcode.image.styles.colormasks import SolidFillColorMask
from qrcode.image.styles.moduledrawers.pil import CircleModuleDrawer, RoundedModuleDrawer, SquareModuleDrawer

from app.biohost.audit import record_event
from app.biohost.storage import StorageError, build_storage_key
from app.biohost.utils import clean, is_hex_color, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink

logger = logging.getLogger(__name__)


class QrCodeError(RuntimeError):
    pass


DEFAULT_SETTINGS: dict[str, Any] = {
    "foreground_colour": "#000000",
    "background_colour": "#ffffff",
    "size": 400,
    "error_correction": "M",
    "module_style": "square",
    "logo_path": None,
    "logo_size": 20,
}

SIZE_MIN, SIZE_MAX = 100, 1000
SIZE_PRESETS = (200, 400, 600, 800, 1000)
LOGO_SIZE_MIN, LOGO_SIZE_MAX = 10, 30
LOGO_MAX_BYTES = 1 * 1024 * 1024
LOGO_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}

ERROR_CORRECTION = {
    "L": qrcode.constants.ERROR_CORRECT_L,
    "M": qrcode.constants.ERROR_CORRECT_M,
    "Q": qrcode.constants.ERROR_CORRECT_Q,
    "H": qrcode.constants.ERROR_CORRECT_H,
}

MODULE_DRAWERS = {
    "square": SquareModuleDrawer,
    "rounded": RoundedModuleDrawer,
    "dots": CircleModuleDrawer,
}

COLOUR_PRESETS: dict[str, tuple[str, str]] = {
    "classic": ("#000000", "#ffffff"),
    "dark": ("#ffffff", "#000000"),
    "brand-violet": ("#7c3aed", "#ffffff"),
    "brand-violet-dark": ("#ffffff", "#7c3aed"),
    "forest": ("#166534", "#f0fdf4"),
    "ocean": ("#1e40af", "#eff6ff"),
    "sunset": ("#c2410c", "#fff7ed"),
    "monochrome": ("#374151", "#f9fafb"),
}

FORMATS = {"png": "image/png", "svg": "image/svg+xml"}

_SVG_OPEN_RE = re.compile(r"(<svg\b[^>]*>)")


# ---------- Settings ----------
def current_settings(biolink: "BioLink") -> dict[str, Any]:
    stored = biolink.get_setting("qr_code") or {}
    return {**DEFAULT_SETTINGS, **{k: v for k, v in stored.items() if k in DEFAULT_SETTINGS}}


def settings_from_form(payload: dict, existing: dict | None = None) -> dict[str, Any]:
    base = dict(existing or DEFAULT_SETTINGS)
    preset = COLOUR_PRESETS.get(clean(payload.get("colour_preset")) or "")
    fg, bg = preset if preset else (
        (clean(payload.get("foreground_colour")) or "").lower(),
        (clean(payload.get("background_colour")) or "").lower(),
    )
    return {
        **base,
        "foreground_colour": fg,
        "background_colour": bg,
        "size": parse_int(payload.get("size")),
        "error_correction": (clean(payload.get("error_correction")) or "").upper(),
        "module_style": clean(payload.get("module_style")),
        "logo_size": parse_int(payload.get("logo_size"), DEFAULT_SETTINGS["logo_size"]),
    }


def validate_settings(settings: dict) -> list[str]:
    errors = []
    if not is_hex_color(settings.get("foreground_colour")):
        errors.append("Foreground colour must be a hex colour like #000000.")
    if not is_hex_color(settings.get("background_colour")):
        errors.append("Background colour must be a hex colour like #ffffff.")
    size = settings.get("size")
    if not isinstance(size, int) or not (SIZE_MIN <= size <= SIZE_MAX):
        errors.append(f"Size must be between {SIZE_MIN} and {SIZE_MAX} pixels.")
    if settings.get("error_correction") not in ERROR_CORRECTION:
        errors.append("Error correction must be one of L, M, Q or H.")
    if settings.get("module_style") not in MODULE_DRAWERS:
        errors.append("Module style must be square, rounded or dots.")
    logo_size = settings.get("logo_size")
    if not isinstance(logo_size, int) or not (LOGO_SIZE_MIN <= logo_size <= LOGO_SIZE_MAX):
        errors.append(f"Logo size must be between {LOGO_SIZE_MIN}% and {LOGO_SIZE_MAX}%.")
    return errors


def _store(s: "Session", biolink: "BioLink", qr: dict, user: "User", action: str) -> dict:
    settings = dict(biolink.settings or {})
    settings["qr_code"] = qr
    biolink.settings = settings
    biolink.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=action,
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={k: v for k, v in qr.items() if k != "logo_path"},
    )
    return qr


def save_settings(s: "Session", biolink: "BioLink", settings: dict, user: "User") -> dict:
    errors = validate_settings(settings)
    if errors:
        raise QrCodeError(" ".join(errors))
    qr = {k: settings.get(k) for k in DEFAULT_SETTINGS}
    qr["logo_path"] = current_settings(biolink).get("logo_path")
    return _store(s, biolink, qr, user, "qr.save")


def swap_colours(s: "Session", biolink: "BioLink", user: "User") -> dict:
    qr = current_settings(biolink)
    qr["foreground_colour"], qr["background_colour"] = qr["background_colour"], qr["foreground_colour"]
    return _store(s, biolink, qr, user, "qr.swap")


def reset(s: "Session", biolink: "BioLink", user: "User") -> dict:
    """Back to defaults. The uploaded logo is removed as well."""
    old_logo = current_settings(biolink).get("logo_path")
    qr = _store(s, biolink, dict(DEFAULT_SETTINGS), user, "qr.reset")
    if old_logo:
        _delete_stored(old_logo)
    return qr


# ---------- Logo ----------
def validate_logo(filename: str, size_bytes: int) -> list[str]:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    errors = []
    if ext not in LOGO_EXTENSIONS:
        errors.append("Logo must be an image (png, jpg, gif or webp).")
    if size_bytes > LOGO_MAX_BYTES:
        errors.append("Logo must be 1MB or smaller.")
    return errors


def upload_logo(
    s: "Session",
    biolink: "BioLink",
    data: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
) -> str:
    from flask import current_app
    from app.biohost.storage import storage_from_config

    errors = validate_logo(filename, len(data))
    if errors:
        raise QrCodeError(" ".join(errors))
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except Exception as e:
        raise QrCodeError("Logo is not a readable image.") from e

    key = build_storage_key(biolink.id, "qr", filename, default="logo.png")
    storage_from_config(current_app.config).put_bytes(key, data, content_type=content_type)
    qr = current_settings(biolink)
    old_key = qr.get("logo_path")
    qr["logo_path"] = key
    _store(s, biolink, qr, user, "qr.logo")
    if old_key and old_key != key:
        _delete_stored(old_key)
    return key


def remove_logo(s: "Session", biolink: "BioLink", user: "User") -> None:
    qr = current_settings(biolink)
    old_key = qr.get("logo_path")
    if not old_key:
        return
    qr["logo_path"] = None
    _store(s, biolink, qr, user, "qr.logo")
    _delete_stored(old_key)


def _delete_stored(key: str) -> None:
    from flask import current_app
    from app.biohost.storage import storage_from_config

    try:
        storage_from_config(current_app.config).delete(key)
    except (StorageError, OSError):
        logger.warning("Failed to delete QR logo %s", key, exc_info=True)


def _load_logo(key: str) -> Image.Image:
    from flask import current_app
    from app.biohost.storage import storage_from_config

    with storage_from_config(current_app.config).open(key) as fh:
        img = Image.open(io.BytesIO(fh.read()))
        img.load()
    return img.convert("RGBA")


# ---------- Rendering ----------
def _rgb(hex_colour: str) -> tuple[int, int, int]:
    h = hex_colour.lstrip("#")
    return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)


def _qr(data: str, settings: dict) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECTION.get(settings.get("error_correction"), qrcode.constants.ERROR_CORRECT_M),
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr


def generate_png(data: str, settings: dict | None = None, logo: Image.Image | None = None) -> bytes:
    """
    Render the QR code as PNG bytes.

    settings are merged over the defaults. When settings carry a logo_path
    and no logo image is passed, the logo is loaded from storage. A logo that
    cannot be loaded or pasted is logged and the code is returned without it.
    """
    settings = {**DEFAULT_SETTINGS, **(settings or {})}
    drawer_cls = MODULE_DRAWERS.get(settings.get("module_style"), SquareModuleDrawer)
    styled = _qr(data, settings).make_image(
        image_factory=StyledPilImage,
        module_drawer=drawer_cls(),
        color_mask=SolidFillColorMask(
            back_color=_rgb(settings["background_colour"]),
            front_color=_rgb(settings["foreground_colour"]),
        ),
    )
    raw = io.BytesIO()
    styled.save(raw, format="PNG")
    raw.seek(0)
    size = int(settings.get("size") or DEFAULT_SETTINGS["size"])
    img = Image.open(raw).convert("RGBA").resize((size, size), Image.Resampling.LANCZOS)

    try:
        if logo is None and settings.get("logo_path"):
            logo = _load_logo(settings["logo_path"])
        if logo is not None:
            img = _paste_logo(img, logo, int(settings.get("logo_size") or DEFAULT_SETTINGS["logo_size"]))
    except (StorageError, OSError, ValueError):
        logger.warning("QR logo embedding failed for %s", settings.get("logo_path"), exc_info=True)

    out = io.BytesIO()
    img.convert("RGB").save(out, format="PNG")
    return out.getvalue()


def _paste_logo(img: Image.Image, logo: Image.Image, logo_size_pct: int) -> Image.Image:
    width = img.size[0]
    target = max(1, width * logo_size_pct // 100)
    logo = logo.convert("RGBA")
    logo.thumbnail((target, target), Image.Resampling.LANCZOS)
    # quiet pad so modules do not touch the logo edge
    pad = max(2, target // 20)
    backing = Image.new("RGBA", (logo.size[0] + pad * 2, logo.size[1] + pad * 2), img.getpixel((0, 0)))
    backing.paste(logo, (pad, pad), logo)
    pos = ((width - backing.size[0]) // 2, (img.size[1] - backing.size[1]) // 2)
    img.paste(backing, pos, backing)
    return img


def generate_svg(data: str, settings: dict | None = None) -> bytes:
    settings = {**DEFAULT_SETTINGS, **(settings or {})}
    svg = _qr(data, settings).make_image(image_factory=qrcode.image.svg.SvgPathImage)
    text = svg.to_string().decode("utf-8")
    fg = settings["foreground_colour"]
    bg = settings["background_colour"]
    text = text.replace("#000000", fg)
    text = _SVG_OPEN_RE.sub(
        lambda m: f'{m.group(1)}<rect width="100%" height="100%" fill="{bg}"/>',
        text,
        count=1,
    )
    return text.encode("utf-8")


def data_uri(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def download(biolink: "BioLink", fmt: str) -> tuple[bytes, str, str]:
    """Returns (body, mimetype, filename)."""
    fmt = (fmt or "png").lower()
    if fmt not in FORMATS:
        raise QrCodeError(f"Unsupported format: {fmt}")
    settings = current_settings(biolink)
    if fmt == "svg":
        body = generate_svg(biolink.full_url, settings)
    else:
        body = generate_png(biolink.full_url, settings)
    return body, FORMATS[fmt], f"qr-{biolink.url}.{fmt}"
