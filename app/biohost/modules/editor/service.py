from __future__ import annotations

import copy
from collections import OrderedDict
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.editor.blocks import BLOCK_TYPES, get_block_type
from app.biohost.modules.editor.models import BREAKPOINTS, REGION_SHORT_CODES, REGIONS, SHORT_CODE_REGIONS, Block
from app.biohost.utils import clean, is_http_url, parse_datetime, parse_int, url_host

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink


LAYOUT_PRESETS: dict[str, dict[str, str]] = {
    "bio": {"phone": "C", "tablet": "C", "desktop": "C"},
    "landing": {"phone": "C", "tablet": "HCF", "desktop": "HCF"},
    "blog": {"phone": "C", "tablet": "HCF", "desktop": "HCRF"},
    "docs": {"phone": "C", "tablet": "HCF", "desktop": "HLCF"},
    "portfolio": {"phone": "C", "tablet": "HCF", "desktop": "HLCRF"},
}
DEFAULT_PRESET = "bio"


class EditorError(RuntimeError):
    pass


# ---------- Layout ----------
def layout_for(biolink: "BioLink") -> dict[str, str]:
    layout = biolink.get_setting("layout")
    if isinstance(layout, dict) and all(bp in layout for bp in BREAKPOINTS):
        return dict(layout)
    return dict(LAYOUT_PRESETS[DEFAULT_PRESET])


def region_enabled(code: str, region: str) -> bool:
    code = (code or "C").upper()
    if region == "header":
        return code.startswith("H")
    if region == "left":
        return "L" in code
    if region == "right":
        return "R" in code
    if region == "footer":
        return code.endswith("F")
    return True


def layout_code(regions: Iterable[str]) -> str:
    wanted = set(regions) | {"content"}
    return "".join(REGION_SHORT_CODES[r] for r in REGIONS if r in wanted)


def enabled_regions(code: str) -> list[str]:
    return [r for r in REGIONS if region_enabled(code, r)]


def select_preset(s: "Session", biolink: "BioLink", preset: str, user: "User") -> dict[str, str]:
    if preset not in LAYOUT_PRESETS:
        raise EditorError(f"Unknown layout preset: {preset}")
    settings = dict(biolink.settings or {})
    settings["layout_preset"] = preset
    settings["layout"] = dict(LAYOUT_PRESETS[preset])
    biolink.settings = settings
    _touch(biolink)
    record_event(
        s,
        actor=user,
        action="biolink.layout",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"preset": preset},
    )
    return settings["layout"]


def _set_desktop_region(s: "Session", biolink: "BioLink", region: str, enabled: bool, user: "User") -> str:
    if region not in REGIONS:
        raise EditorError(f"Unknown region: {region}")
    if region == "content" and not enabled:
        raise EditorError("The content region cannot be disabled.")
    layout = layout_for(biolink)
    current = set(enabled_regions(layout["desktop"]))
    if enabled:
        current.add(region)
    else:
        current.discard(region)
    layout["desktop"] = layout_code(current)
    settings = dict(biolink.settings or {})
    settings["layout"] = layout
    settings["layout_preset"] = "custom"
    biolink.settings = settings
    _touch(biolink)
    record_event(
        s,
        actor=user,
        action="biolink.layout",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"region": region, "enabled": enabled, "desktop": layout["desktop"]},
    )
    return layout["desktop"]


def enable_region(s: "Session", biolink: "BioLink", region: str, user: "User") -> str:
    return _set_desktop_region(s, biolink, region, True, user)


def disable_region(s: "Session", biolink: "BioLink", region: str, user: "User") -> str:
    return _set_desktop_region(s, biolink, region, False, user)


# ---------- Blocks ----------
def _touch(biolink: "BioLink") -> None:
    biolink.updated_at = datetime.utcnow()


def region_blocks(biolink: "BioLink", region: str) -> list[Block]:
    return sorted((b for b in biolink.blocks if b.region == region), key=lambda b: (b.order, b.id or 0))


def _resequence(blocks: list[Block]) -> None:
    for i, b in enumerate(blocks, start=1):
        b.order = i


def blocks_by_region(biolink: "BioLink") -> "OrderedDict[str, list[Block]]":
    out: "OrderedDict[str, list[Block]]" = OrderedDict((r, []) for r in REGIONS)
    for region in REGIONS:
        out[region] = region_blocks(biolink, region)
    return out


def check_block_allowed(user: "User", block_type: str, region: str) -> None:
    bt = get_block_type(block_type)
    if bt is None:
        raise EditorError(f"Unknown block type: {block_type}")
    if region not in REGIONS:
        raise EditorError(f"Unknown region: {region}")
    if region not in bt.allowed_regions:
        raise EditorError(f"{bt.name} blocks cannot be placed in the {region} region.")
    if bt.tier and not entitlements.has_tier(user, bt.tier):
        raise EditorError(f"{bt.name} blocks need the {bt.tier.title()} plan.")


def add_block(s: "Session", biolink: "BioLink", block_type: str, user: "User", region: str = "content") -> Block:
    check_block_allowed(user, block_type, region)
    bt = BLOCK_TYPES[block_type]
    existing = region_blocks(biolink, region)
    now = datetime.utcnow()
    block = Block(
        type=block_type,
        region=region,
        order=(max(b.order for b in existing) + 1) if existing else 1,
        settings=copy.deepcopy(bt.defaults),
        clicks=0,
        is_enabled=True,
        created_at=now,
        updated_at=now,
    )
    biolink.blocks.append(block)
    _touch(biolink)
    s.flush()
    record_event(
        s,
        actor=user,
        action="block.create",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"biolink_id": biolink.id, "type": block_type, "region": region},
    )
    return block


def validate_block_payload(block: Block, payload: dict) -> list[str]:
    errors = []
    bt = get_block_type(block.type)
    location = clean(payload.get("location_url"))
    if bt is not None and bt.needs_url:
        if not location or not is_http_url(location):
            errors.append("A valid http(s) URL is required.")
        elif len(location) > 512:
            errors.append("URL must be 512 characters or fewer.")
        elif bt.embed_hosts and url_host(location) not in bt.embed_hosts:
            errors.append(f"{bt.name} URLs must be on: {', '.join(bt.embed_hosts)}")
    elif location and not is_http_url(location):
        errors.append("URL must be a valid http(s) URL.")
    try:
        start = parse_datetime(payload.get("start_date"))
        end = parse_datetime(payload.get("end_date"))
    except ValueError:
        errors.append("Dates must be YYYY-MM-DD or YYYY-MM-DDTHH:MM.")
    else:
        if start and end and end < start:
            errors.append("End date must be after the start date.")
    return errors


def update_block_settings(s: "Session", block: Block, payload: dict, user: "User") -> Block:
    """payload: location_url, start_date, end_date and settings (dict merged over the current settings)."""
    changes: dict[str, Any] = {}
    new_location = clean(payload.get("location_url"))
    if new_location != block.location_url:
        changes["location_url"] = {"old": block.location_url, "new": new_location}
        block.location_url = new_location
    for key in ("start_date", "end_date"):
        if key in payload:
            new_value = parse_datetime(payload.get(key))
            if new_value != getattr(block, key):
                changes[key] = {"old": str(getattr(block, key)), "new": str(new_value)}
                setattr(block, key, new_value)
    incoming = payload.get("settings") or {}
    if incoming:
        merged = dict(block.settings or {})
        merged.update(incoming)
        if merged != (block.settings or {}):
            changes["settings"] = sorted(incoming.keys())
            block.settings = merged
    block.updated_at = datetime.utcnow()
    _touch(block.biolink)
    record_event(
        s,
        actor=user,
        action="block.edit",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"biolink_id": block.biolink_id, "type": block.type, "changes": changes},
    )
    return block


def toggle_block(s: "Session", block: Block, user: "User") -> Block:
    block.is_enabled = not block.is_enabled
    block.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="block.toggle",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"biolink_id": block.biolink_id, "is_enabled": block.is_enabled},
    )
    return block


def delete_block(s: "Session", block: Block, user: "User") -> None:
    biolink = block.biolink
    region = block.region
    record_event(
        s,
        actor=user,
        action="block.delete",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"biolink_id": biolink.id, "type": block.type, "region": region},
    )
    biolink.blocks.remove(block)
    s.flush()
    _resequence(region_blocks(biolink, region))
    _touch(biolink)


def duplicate_block(s: "Session", block: Block, user: "User") -> Block:
    check_block_allowed(user, block.type, block.region)
    biolink = block.biolink
    siblings = region_blocks(biolink, block.region)
    for b in siblings:
        if b.order > block.order:
            b.order += 1
    now = datetime.utcnow()
    clone = Block(
        type=block.type,
        region=block.region,
        order=block.order + 1,
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
    biolink.blocks.append(clone)
    s.flush()
    _touch(biolink)
    record_event(
        s,
        actor=user,
        action="block.duplicate",
        entity_type="Block",
        entity_id=str(clone.id),
        metadata={"biolink_id": biolink.id, "source_id": block.id},
    )
    return clone


def _swap(s: "Session", block: Block, delta: int, user: "User") -> bool:
    siblings = region_blocks(block.biolink, block.region)
    _resequence(siblings)
    idx = siblings.index(block)
    target = idx + delta
    if target < 0 or target >= len(siblings):
        return False
    other = siblings[target]
    block.order, other.order = other.order, block.order
    _touch(block.biolink)
    record_event(
        s,
        actor=user,
        action="block.move",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"biolink_id": block.biolink_id, "direction": "up" if delta < 0 else "down"},
    )
    return True


def move_block_up(s: "Session", block: Block, user: "User") -> bool:
    return _swap(s, block, -1, user)


def move_block_down(s: "Session", block: Block, user: "User") -> bool:
    return _swap(s, block, 1, user)


def reorder_blocks(s: "Session", biolink: "BioLink", ids: Iterable[Any], user: "User", region: str = "content") -> list[int]:
    """Rewrite orders 1..n for region in the given id order. Unknown ids are ignored; unlisted blocks go last."""
    if region not in REGIONS:
        raise EditorError(f"Unknown region: {region}")
    in_region = {b.id: b for b in region_blocks(biolink, region)}
    ordered: list[Block] = []
    for raw in ids:
        pk = parse_int(raw)
        block = in_region.pop(pk, None) if pk is not None else None
        if block is not None:
            ordered.append(block)
    ordered.extend(sorted(in_region.values(), key=lambda b: b.order))
    _resequence(ordered)
    _touch(biolink)
    record_event(
        s,
        actor=user,
        action="block.reorder",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"region": region, "order": [b.id for b in ordered]},
    )
    return [b.id for b in ordered]


def move_block_to_region(
    s: "Session",
    block: Block,
    region: str,
    user: "User",
    before_block_id: Any = None,
) -> Block:
    bt = get_block_type(block.type)
    if region not in REGIONS:
        raise EditorError(f"Unknown region: {region}")
    if bt is not None and region not in bt.allowed_regions:
        raise EditorError(f"{bt.name} blocks cannot be placed in the {region} region.")
    biolink = block.biolink
    old_region = block.region

    source = [b for b in region_blocks(biolink, old_region) if b is not block]
    target = [b for b in region_blocks(biolink, region) if b is not block]
    before_pk = parse_int(before_block_id)
    position = len(target)
    for i, b in enumerate(target):
        if b.id == before_pk:
            position = i
            break
    target.insert(position, block)
    block.region = region
    _resequence(target)
    if old_region != region:
        _resequence(source)
    block.updated_at = datetime.utcnow()
    _touch(biolink)
    record_event(
        s,
        actor=user,
        action="block.move_region",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"biolink_id": biolink.id, "from": old_region, "to": region, "order": block.order},
    )
    return block


def toggle_breakpoint_visibility(s: "Session", block: Block, breakpoint: str, user: "User") -> list[str] | None:
    if breakpoint not in BREAKPOINTS:
        raise EditorError(f"Unknown breakpoint: {breakpoint}")
    hidden = list(block.breakpoint_visibility or [])
    if breakpoint in hidden:
        hidden.remove(breakpoint)
    else:
        hidden.append(breakpoint)
    block.breakpoint_visibility = [bp for bp in BREAKPOINTS if bp in hidden] or None
    block.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="block.breakpoints",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"hidden": block.breakpoint_visibility},
    )
    return block.breakpoint_visibility


def reset_breakpoint_visibility(s: "Session", block: Block, user: "User") -> None:
    block.breakpoint_visibility = None
    block.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="block.breakpoints",
        entity_type="Block",
        entity_id=str(block.id),
        metadata={"hidden": None},
    )


def get_biolink_block(biolink: "BioLink", block_id: Any) -> Block | None:
    pk = parse_int(block_id)
    return next((b for b in biolink.blocks if b.id == pk), None)


def region_from_code(code: str) -> str | None:
    return SHORT_CODE_REGIONS.get((code or "").upper())
