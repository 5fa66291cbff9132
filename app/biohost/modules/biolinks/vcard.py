from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

from app.biohost.utils import clean, is_http_url, is_valid_email

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


DEFAULT_COUNTRY = "United Kingdom"
SOCIAL_NETWORKS = ("linkedin", "twitter", "facebook", "instagram")
PHOTO_MAX_BYTES = 2 * 1024 * 1024
PHOTO_EXTENSIONS = {"jpg": "JPEG", "jpeg": "JPEG", "png": "PNG", "gif": "GIF", "webp": "WEBP"}


def validate_vcard_payload(payload: dict) -> list[str]:
    errors = []
    first = clean(payload.get("first_name"))
    last = clean(payload.get("last_name"))
    if not first:
        errors.append("First name is required.")
    elif len(first) > 100:
        errors.append("First name must be 100 characters or fewer.")
    if not last:
        errors.append("Last name is required.")
    elif len(last) > 100:
        errors.append("Last name must be 100 characters or fewer.")

    email = clean(payload.get("email"))
    if email and not is_valid_email(email):
        errors.append("Email address is invalid.")
    website = clean(payload.get("website"))
    if website and not is_http_url(website):
        errors.append("Website must be a valid http(s) URL.")
    for network in SOCIAL_NETWORKS:
        value = clean(payload.get(f"social_{network}"))
        if value and not is_http_url(value):
            errors.append(f"{network.title()} must be a valid http(s) URL.")
    notes = clean(payload.get("notes"))
    if notes and len(notes) > 1000:
        errors.append("Notes must be 1000 characters or fewer.")
    return errors


def validate_vcard_photo(filename: str, size_bytes: int) -> list[str]:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    errors = []
    if ext not in PHOTO_EXTENSIONS:
        errors.append("Photo must be an image (jpg, png, gif or webp).")
    if size_bytes > PHOTO_MAX_BYTES:
        errors.append("Photo must be 2MB or smaller.")
    return errors


def build_vcard_settings(payload: dict) -> dict[str, Any]:
    """Shape the flat form payload into settings["vcard"]."""
    return {
        "first_name": clean(payload.get("first_name")),
        "last_name": clean(payload.get("last_name")),
        "email": clean(payload.get("email")),
        "phone": clean(payload.get("phone")),
        "phone_work": clean(payload.get("phone_work")),
        "company": clean(payload.get("company")),
        "job_title": clean(payload.get("job_title")),
        "website": clean(payload.get("website")),
        "address": {
            "street": clean(payload.get("address_street")),
            "city": clean(payload.get("address_city")),
            "region": clean(payload.get("address_region")),
            "postcode": clean(payload.get("address_postcode")),
            "country": clean(payload.get("address_country")) or DEFAULT_COUNTRY,
        },
        "social": {n: clean(payload.get(f"social_{n}")) for n in SOCIAL_NETWORKS},
        "notes": clean(payload.get("notes")),
        "photo_path": clean(payload.get("photo_path")),
    }


def _escape(value: str | None) -> str:
    """vCard 3.0 text escaping (RFC 2426 section 4)."""
    if not value:
        return ""
    return (
        value.replace("\\", "\\\\")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def _photo_line(photo_bytes: bytes | None, photo_path: str | None) -> str | None:
    if not photo_bytes or not photo_path:
        return None
    ext = photo_path.rsplit(".", 1)[-1].lower()
    typ = PHOTO_EXTENSIONS.get(ext, "JPEG")
    b64 = base64.b64encode(photo_bytes).decode("ascii")
    # fold base64 to 76 chars per line with CRLF + space continuation
    chunks = [b64[i : i + 76] for i in range(0, len(b64), 76)]
    return f"PHOTO;ENCODING=b;TYPE={typ}:" + "\r\n ".join(chunks)


def render_vcard(biolink: "BioLink", photo_bytes: bytes | None = None) -> str:
    data = biolink.get_setting("vcard", {}) or {}
    first = data.get("first_name") or ""
    last = data.get("last_name") or ""
    full_name = f"{first} {last}".strip()

    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"N:{_escape(last)};{_escape(first)};;;",
        f"FN:{_escape(full_name)}",
    ]
    photo = _photo_line(photo_bytes, data.get("photo_path"))
    if photo:
        lines.append(photo)
    if data.get("company"):
        lines.append(f"ORG:{_escape(data['company'])}")
    if data.get("job_title"):
        lines.append(f"TITLE:{_escape(data['job_title'])}")
    if data.get("phone"):
        lines.append(f"TEL;TYPE=CELL:{_escape(data['phone'])}")
    if data.get("phone_work"):
        lines.append(f"TEL;TYPE=WORK,VOICE:{_escape(data['phone_work'])}")
    if data.get("email"):
        lines.append(f"EMAIL;TYPE=INTERNET:{_escape(data['email'])}")
    if data.get("website"):
        lines.append(f"URL:{data['website']}")

    address = data.get("address") or {}
    if any(address.get(k) for k in ("street", "city", "region", "postcode")):
        adr = ";".join(
            _escape(address.get(k))
            for k in ("street", "city", "region", "postcode", "country")
        )
        lines.append(f"ADR;TYPE=WORK:;;{adr}")

    for network, url in (data.get("social") or {}).items():
        if url:
            lines.append(f"X-SOCIALPROFILE;TYPE={network}:{url}")
    if data.get("notes"):
        lines.append(f"NOTE:{_escape(data['notes'])}")
    lines.append(f"SOURCE:{biolink.full_url}")
    lines.append("END:VCARD")
    return "\r\n".join(lines) + "\r\n"
