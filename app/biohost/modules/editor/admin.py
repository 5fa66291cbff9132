from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.models import User
from app.biohost.modules.analytics.targeting import conditions_from_form, form_options, validate_rules, validate_schedule
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.editor.blocks import BLOCK_TYPES, get_block_type, types_by_category
from app.biohost.modules.editor.models import BREAKPOINTS, REGIONS, Block
from app.biohost.modules.editor.service import (
    LAYOUT_PRESETS,
    EditorError,
    add_block,
    blocks_by_region,
    delete_block,
    disable_region,
    duplicate_block,
    enable_region,
    enabled_regions,
    get_biolink_block,
    layout_for,
    move_block_down,
    move_block_to_region,
    move_block_up,
    reorder_blocks,
    reset_breakpoint_visibility,
    select_preset,
    toggle_block,
    toggle_breakpoint_visibility,
    update_block_settings,
    validate_block_payload,
)
from app.biohost.modules.pixels.service import list_pixels, set_biolink_pixels
from app.biohost.modules.themes.service import available_themes
from app.biohost.rbac import require_permission
from app.biohost.utils import clean, flag, get_owned, parse_int

bp = Blueprint("editor", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owned_biolink(biolink_id: int) -> BioLink:
    biolink = get_owned(db_session(), BioLink, biolink_id, _current_user())
    if biolink is None or biolink.type != "biolink":
        abort(404)
    return biolink


def _owned_block(biolink_id: int, block_id: int) -> tuple[BioLink, Block]:
    biolink = _owned_biolink(biolink_id)
    block = get_biolink_block(biolink, block_id)
    if block is None:
        abort(404)
    return biolink, block


def _back(biolink_id: int, block: Block | None = None):
    url = url_for("editor.editor_page", biolink_id=biolink_id)
    if block is not None:
        url += f"#block-{block.id}"
    return redirect(url)


def _wants_json() -> bool:
    return request.is_json or "application/json" in (request.headers.get("Accept") or "")


def _block_settings_from_form(block: Block, form) -> dict[str, Any]:
    """Coerce setting_<key> fields to the type of the block type's default for that key."""
    bt = get_block_type(block.type)
    defaults = bt.defaults if bt is not None else {}
    out: dict[str, Any] = {}
    for key, default in defaults.items():
        field = f"setting_{key}"
        if isinstance(default, bool):
            out[key] = flag(form.get(field))
        elif isinstance(default, (dict, list)):
            continue
        elif field not in form:
            continue
        elif isinstance(default, int):
            out[key] = parse_int(form.get(field), default)
        else:
            out[key] = clean(form.get(field))
    return out


# ---------- Page ----------
@bp.get("/biolinks/<int:biolink_id>/editor")
@require_permission("biolinks.edit")
def editor_page(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    layout = layout_for(biolink)
    return render_template(
        "admin/editor/page.html",
        biolink=biolink,
        regions=blocks_by_region(biolink),
        layout=layout,
        layout_preset=biolink.get_setting("layout_preset") or "bio",
        layout_presets=LAYOUT_PRESETS,
        desktop_regions=enabled_regions(layout["desktop"]),
        all_regions=REGIONS,
        breakpoints=BREAKPOINTS,
        block_types=BLOCK_TYPES,
        condition_options=form_options(),
        block_categories=types_by_category(),
        pixels=list_pixels(s, u),
        selected_pixel_ids={p.id for p in biolink.pixels},
        themes=available_themes(s, u),
    )


# ---------- Blocks ----------
@bp.post("/biolinks/<int:biolink_id>/blocks/new")
@require_permission("biolinks.edit")
def block_add(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    try:
        block = add_block(s, biolink, request.form.get("type") or "", u, region=request.form.get("region") or "content")
    except EditorError as e:
        flash(str(e), "danger")
        return _back(biolink_id)
    s.commit()
    flash(f"{BLOCK_TYPES[block.type].name} block added.", "success")
    return _back(biolink_id, block)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/edit")
@require_permission("biolinks.edit")
def block_edit(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)

    payload = {
        "location_url": request.form.get("location_url"),
        "start_date": request.form.get("start_date"),
        "end_date": request.form.get("end_date"),
        "settings": _block_settings_from_form(block, request.form),
    }
    errors = validate_block_payload(block, payload)
    if "conditions_form" in request.form:
        conditions = conditions_from_form(request.form)
        errors.extend(validate_rules(conditions) + validate_schedule(conditions["schedule"]))
        payload["settings"]["conditions"] = conditions
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back(biolink_id, block)

    update_block_settings(s, block, payload, u)
    s.commit()
    flash("Block saved.", "success")
    return _back(biolink_id, block)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/toggle")
@require_permission("biolinks.edit")
def block_toggle(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    toggle_block(s, block, u)
    s.commit()
    if _wants_json():
        return jsonify({"ok": True, "is_enabled": block.is_enabled})
    return _back(biolink_id, block)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/delete")
@require_permission("biolinks.edit")
def block_delete(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    delete_block(s, block, u)
    s.commit()
    flash("Block deleted.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/duplicate")
@require_permission("biolinks.edit")
def block_duplicate(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    try:
        clone = duplicate_block(s, block, u)
    except EditorError as e:
        flash(str(e), "danger")
        return _back(biolink_id, block)
    s.commit()
    flash("Block duplicated.", "success")
    return _back(biolink_id, clone)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/up")
@require_permission("biolinks.edit")
def block_up(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    if move_block_up(s, block, u):
        s.commit()
    return _back(biolink_id, block)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/down")
@require_permission("biolinks.edit")
def block_down(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    if move_block_down(s, block, u):
        s.commit()
    return _back(biolink_id, block)


@bp.post("/biolinks/<int:biolink_id>/blocks/reorder")
@require_permission("biolinks.edit")
def blocks_reorder(biolink_id: int):
    """Called by the drag-and-drop list: {"region": "content", "order": [3, 1, 2]}."""
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    data = request.get_json(silent=True) or {}
    ids = data.get("order")
    if ids is None:
        ids = request.form.getlist("order")
    if not isinstance(ids, list):
        return jsonify({"ok": False, "error": "order must be a list of block ids"}), 400
    try:
        order = reorder_blocks(s, biolink, ids, u, region=data.get("region") or request.form.get("region") or "content")
    except EditorError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    s.commit()
    return jsonify({"ok": True, "order": order})


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/region")
@require_permission("biolinks.edit")
def block_move_region(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    data = request.get_json(silent=True) or request.form
    try:
        move_block_to_region(s, block, data.get("region") or "", u, before_block_id=data.get("before_block_id"))
    except EditorError as e:
        if _wants_json():
            return jsonify({"ok": False, "error": str(e)}), 400
        flash(str(e), "danger")
        return _back(biolink_id, block)
    s.commit()
    if _wants_json():
        return jsonify({"ok": True, "region": block.region, "order": block.order, "hlcrf_id": block.hlcrf_id})
    return _back(biolink_id, block)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/breakpoints/<breakpoint>")
@require_permission("biolinks.edit")
def block_toggle_breakpoint(biolink_id: int, block_id: int, breakpoint: str):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    try:
        hidden = toggle_breakpoint_visibility(s, block, breakpoint, u)
    except EditorError as e:
        if _wants_json():
            return jsonify({"ok": False, "error": str(e)}), 400
        flash(str(e), "danger")
        return _back(biolink_id, block)
    s.commit()
    if _wants_json():
        return jsonify({"ok": True, "hidden": hidden or []})
    return _back(biolink_id, block)


@bp.post("/biolinks/<int:biolink_id>/blocks/<int:block_id>/breakpoints/reset")
@require_permission("biolinks.edit")
def block_reset_breakpoints(biolink_id: int, block_id: int):
    s = db_session()
    u = _current_user()
    _biolink, block = _owned_block(biolink_id, block_id)
    reset_breakpoint_visibility(s, block, u)
    s.commit()
    if _wants_json():
        return jsonify({"ok": True, "hidden": []})
    return _back(biolink_id, block)


# ---------- Layout ----------
@bp.post("/biolinks/<int:biolink_id>/layout/preset")
@require_permission("biolinks.edit")
def layout_preset(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    try:
        select_preset(s, biolink, request.form.get("preset") or "", u)
    except EditorError as e:
        flash(str(e), "danger")
        return _back(biolink_id)
    s.commit()
    flash("Layout updated.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/layout/regions/<region>")
@require_permission("biolinks.edit")
def layout_region(biolink_id: int, region: str):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    try:
        if flag(request.form.get("enabled")):
            enable_region(s, biolink, region, u)
        else:
            disable_region(s, biolink, region, u)
    except EditorError as e:
        flash(str(e), "danger")
        return _back(biolink_id)
    s.commit()
    return _back(biolink_id)


# ---------- Page settings ----------
@bp.post("/biolinks/<int:biolink_id>/pixels")
@require_permission("biolinks.edit")
def biolink_pixels(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    pixels = set_biolink_pixels(s, biolink, request.form.getlist("pixel_ids"), u)
    s.commit()
    flash(f"{len(pixels)} pixel(s) attached.", "success")
    return _back(biolink_id)
