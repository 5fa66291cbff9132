from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.entitlements import EntitlementDenied, can
from app.biohost.models import User
from app.biohost.modules.pixels.models import Pixel
from app.biohost.modules.pixels.service import (
    PIXEL_TYPES,
    create_pixel,
    delete_pixel,
    list_pixels,
    update_pixel,
    validate_pixel_payload,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned

bp = Blueprint("pixels", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owned_pixel(pixel_id: int) -> Pixel:
    pixel = get_owned(db_session(), Pixel, pixel_id, _current_user())
    if pixel is None:
        abort(404)
    return pixel


# ---------- List ----------
@bp.get("/pixels")
@require_permission("pixels.manage")
def pixels_list():
    s = db_session()
    u = _current_user()
    return render_template(
        "admin/pixels/list.html",
        pixels=list_pixels(s, u),
        pixel_types=PIXEL_TYPES,
        allowance=can(s, u, "bio.pixels"),
    )


# ---------- New ----------
@bp.post("/pixels/new")
@require_permission("pixels.manage")
def pixels_new_post():
    s = db_session()
    u = _current_user()

    payload = {
        "type": request.form.get("type"),
        "name": request.form.get("name"),
        "pixel_id": request.form.get("pixel_id"),
    }
    errors = validate_pixel_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("pixels.pixels_list"))

    try:
        pixel = create_pixel(s, payload, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("pixels.pixels_list"))
    s.commit()
    flash(f"Pixel '{pixel.name}' created.", "success")
    return redirect(url_for("pixels.pixels_list"))


# ---------- Edit ----------
@bp.post("/pixels/<int:pixel_id>/edit")
@require_permission("pixels.manage")
def pixel_edit_post(pixel_id: int):
    s = db_session()
    u = _current_user()
    pixel = _owned_pixel(pixel_id)

    payload = {
        "type": request.form.get("type"),
        "name": request.form.get("name"),
        "pixel_id": request.form.get("pixel_id"),
    }
    errors = validate_pixel_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("pixels.pixels_list"))

    update_pixel(s, pixel, payload, u)
    s.commit()
    flash("Pixel updated.", "success")
    return redirect(url_for("pixels.pixels_list"))


@bp.post("/pixels/<int:pixel_id>/delete")
@require_permission("pixels.manage")
def pixel_delete(pixel_id: int):
    s = db_session()
    u = _current_user()
    pixel = _owned_pixel(pixel_id)
    name = pixel.name
    delete_pixel(s, pixel, u)
    s.commit()
    flash(f"Pixel '{name}' deleted.", "success")
    return redirect(url_for("pixels.pixels_list"))
