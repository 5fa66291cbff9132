from __future__ import annotations

import copy
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.page_templates.models import Template
from app.biohost.utils import clean

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink


PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


class TemplateError(RuntimeError):
    pass


def replace_placeholders(value: Any, values: dict[str, Any]) -> Any:
    """Substitute {{key}} in every string nested in value; unknown keys are left as-is."""
    if isinstance(value, str):
        return PLACEHOLDER_RE.sub(lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0), value)
    if isinstance(value, list):
        return [replace_placeholders(v, values) for v in value]
    if isinstance(value, dict):
        return {k: replace_placeholders(v, values) for k, v in value.items()}
    return value


def merged_values(template: Template, values: dict[str, Any] | None) -> dict[str, Any]:
    merged = dict(template.placeholders or {})
    for k, v in (values or {}).items():
        if v not in (None, ""):
            merged[k] = v
    return merged


def preview(template: Template, values: dict[str, Any] | None = None) -> dict[str, Any]:
    merged = merged_values(template, values)
    return {
        "blocks": replace_placeholders(copy.deepcopy(template.blocks_json or []), merged),
        "settings": replace_placeholders(copy.deepcopy(template.settings_json or {}), merged),
    }


def is_locked(template: Template, user: "User") -> bool:
    return bool(template.is_premium and not entitlements.has_premium_access(user))


def _visible(template: Template, user: "User") -> bool:
    if template.is_system:
        return template.is_active
    return template.user_id == user.id


def available_templates(
    s: "Session",
    user: "User",
    *,
    category: str | None = None,
    search: str | None = None,
) -> list[Template]:
    q = s.query(Template).filter(
        Template.is_active.is_(True),
        or_(Template.is_system.is_(True), Template.user_id == user.id),
    )
    category = clean(category)
    if category:
        q = q.filter(Template.category == category)
    search = clean(search)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Template.name.ilike(like), Template.description.ilike(like)))
    templates = q.order_by(Template.is_system.desc(), Template.sort_order.asc(), Template.name.asc()).all()
    for t in templates:
        t.is_locked = is_locked(t, user)
    return templates


def categories(s: "Session", user: "User") -> list[str]:
    rows = (
        s.query(Template.category)
        .filter(Template.is_active.is_(True), or_(Template.is_system.is_(True), Template.user_id == user.id))
        .distinct()
        .all()
    )
    return sorted(r[0] for r in rows if r[0])


def get_visible_template(s: "Session", template_id: Any, user: "User") -> Template | None:
    try:
        template = s.get(Template, int(template_id))
    except (TypeError, ValueError):
        return None
    if template is None or not _visible(template, user):
        return None
    template.is_locked = is_locked(template, user)
    return template


def _merge_settings(current: dict, incoming: dict) -> dict:
    merged = dict(current or {})
    for key, value in (incoming or {}).items():
        if key == "theme":
            merged["theme"] = value
        elif key == "seo" and isinstance(value, dict):
            merged["seo"] = {**(merged.get("seo") or {}), **value}
        else:
            merged[key] = value
    return merged


def apply_template(
    s: "Session",
    biolink: "BioLink",
    template: Template,
    user: "User",
    values: dict[str, Any] | None = None,
    replace_existing: bool = True,
) -> int:
    """Returns the number of blocks created."""
    from app.biohost.modules.editor.models import REGIONS, Block

    if not _visible(template, user):
        raise TemplateError("Template not found.")
    if is_locked(template, user):
        raise TemplateError(f"{template.name} is a premium template. Upgrade to use it.")
    entitlements.require(s, user, "bio.templates")

    rendered = preview(template, values)
    if replace_existing:
        biolink.blocks.clear()
        s.flush()

    biolink.settings = _merge_settings(biolink.settings or {}, rendered["settings"])

    now = datetime.utcnow()
    next_order: dict[str, int] = {}
    for block in biolink.blocks:
        next_order[block.region] = max(next_order.get(block.region, 0), block.order)
    created = 0
    for definition in rendered["blocks"]:
        if not isinstance(definition, dict) or not definition.get("type"):
            continue
        region = definition.get("region") if definition.get("region") in REGIONS else "content"
        next_order[region] = next_order.get(region, 0) + 1
        biolink.blocks.append(
            Block(
                type=definition["type"],
                region=region,
                order=next_order[region],
                location_url=definition.get("location_url"),
                settings=definition.get("settings") or {},
                breakpoint_visibility=definition.get("breakpoint_visibility"),
                clicks=0,
                is_enabled=definition.get("is_enabled", True),
                created_at=now,
                updated_at=now,
            )
        )
        created += 1

    template.usage_count = (template.usage_count or 0) + 1
    biolink.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="biolink.template_apply",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"template_id": template.id, "template": template.name, "blocks": created, "replace": replace_existing},
    )
    return created


def create_from_template(
    s: "Session",
    user: "User",
    template: Template,
    slug: str | None,
    values: dict[str, Any] | None = None,
) -> "BioLink":
    from app.biohost.modules.biolinks.service import create_biolink

    if is_locked(template, user):
        raise TemplateError(f"{template.name} is a premium template. Upgrade to use it.")
    biolink = create_biolink(s, {"url": slug}, user)
    apply_template(s, biolink, template, user, values, replace_existing=True)
    return biolink


def validate_template_payload(payload: dict) -> list[str]:
    errors = []
    name = clean(payload.get("name"))
    if not name:
        errors.append("Name is required.")
    elif len(name) > 128:
        errors.append("Name must be 128 characters or fewer.")
    category = clean(payload.get("category"))
    if not category:
        errors.append("Category is required.")
    elif len(category) > 64:
        errors.append("Category must be 64 characters or fewer.")
    return errors


def _unique_slug(s: "Session", name: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:120] or "template"
    slug = base
    n = 2
    while s.query(Template.id).filter(Template.slug == slug).first() is not None:
        slug = f"{base}-{n}"
        n += 1
    return slug


def save_as_template(s: "Session", biolink: "BioLink", payload: dict, user: "User") -> Template:
    """Snapshot a page's blocks and settings into a custom template."""
    entitlements.require(s, user, "bio.templates")
    blocks = [
        {
            "type": b.type,
            "region": b.region,
            "location_url": b.location_url,
            "settings": copy.deepcopy(b.settings or {}),
            "breakpoint_visibility": b.breakpoint_visibility,
            "is_enabled": b.is_enabled,
        }
        for b in biolink.blocks
    ]
    # qr styling and pwa prompts are page-specific
    settings = {k: copy.deepcopy(v) for k, v in (biolink.settings or {}).items() if k not in ("qr_code", "pwa")}
    now = datetime.utcnow()
    name = clean(payload.get("name"))
    template = Template(
        user_id=user.id,
        name=name,
        slug=_unique_slug(s, name),
        category=clean(payload.get("category")),
        description=clean(payload.get("description")),
        blocks_json=blocks,
        settings_json=settings,
        placeholders={},
        tags=[],
        is_system=False,
        is_premium=False,
        is_active=True,
        sort_order=0,
        usage_count=0,
        created_at=now,
        updated_at=now,
    )
    s.add(template)
    s.flush()
    record_event(
        s,
        actor=user,
        action="template.create",
        entity_type="Template",
        entity_id=str(template.id),
        metadata={"name": template.name, "source_biolink_id": biolink.id, "blocks": len(blocks)},
    )
    return template


def delete_template(s: "Session", template: Template, user: "User") -> None:
    if template.is_system or template.user_id != user.id:
        raise TemplateError("Only your own templates can be deleted.")
    record_event(
        s,
        actor=user,
        action="template.delete",
        entity_type="Template",
        entity_id=str(template.id),
        metadata={"name": template.name},
    )
    s.delete(template)
    s.flush()
