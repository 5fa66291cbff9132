from __future__ import annotations

from flask import Blueprint, Response, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.qr_codes.service import (
    COLOUR_PRESETS,
    ERROR_CORRECTION,
    FORMATS,
    LOGO_SIZE_MAX,
    LOGO_SIZE_MIN,
    MODULE_DRAWERS,
    SIZE_PRESETS,
    QrCodeError,
    current_settings,
    data_uri,
    download,
    generate_png,
    remove_logo,
    reset,
    save_settings,
    settings_from_form,
    swap_colours,
    upload_logo,
    validate_settings,
)
from app.biohost.rbac import require_permission
from app.biohost.storage import StorageError
from app.biohost.utils import get_owned

bp = Blueprint("qr_codes", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owned_biolink(biolink_id: int) -> BioLink:
    biolink = get_owned(db_session(), BioLink, biolink_id, _current_user())
    if biolink is None:
        abort(404)
    return biolink


def _back(biolink_id: int):
    return redirect(url_for("qr_codes.qr_page", biolink_id=biolink_id))


@bp.get("/biolinks/<int:biolink_id>/qr")
@require_permission("qr.manage")
def qr_page(biolink_id: int):
    biolink = _owned_biolink(biolink_id)
    settings = current_settings(biolink)
    return render_template(
        "admin/qr/page.html",
        biolink=biolink,
        settings=settings,
        preview=data_uri(generate_png(biolink.full_url, settings)),
        colour_presets=COLOUR_PRESETS,
        size_presets=SIZE_PRESETS,
        error_correction_levels=tuple(ERROR_CORRECTION),
        module_styles=tuple(MODULE_DRAWERS),
        formats=tuple(FORMATS),
        logo_size_range=(LOGO_SIZE_MIN, LOGO_SIZE_MAX),
    )


@bp.post("/biolinks/<int:biolink_id>/qr/preview")
@require_permission("qr.manage")
def qr_preview(biolink_id: int):
    """Unsaved settings in, data URI out; the page swaps the preview image."""
    biolink = _owned_biolink(biolink_id)
    settings = settings_from_form(request.form, current_settings(biolink))
    errors = validate_settings(settings)
    if errors:
        return jsonify({"ok": False, "errors": errors}), 400
    return jsonify({"ok": True, "data_uri": data_uri(generate_png(biolink.full_url, settings))})


@bp.post("/biolinks/<int:biolink_id>/qr")
@require_permission("qr.manage")
def qr_save(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    settings = settings_from_form(request.form, current_settings(biolink))
    errors = validate_settings(settings)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back(biolink_id)
    save_settings(s, biolink, settings, u)
    s.commit()
    flash("QR code settings saved.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/qr/swap")
@require_permission("qr.manage")
def qr_swap(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    swap_colours(s, biolink, u)
    s.commit()
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/qr/reset")
@require_permission("qr.manage")
def qr_reset(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    reset(s, biolink, u)
    s.commit()
    flash("QR code reset to defaults.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/qr/logo")
@require_permission("qr.manage")
def qr_logo_upload(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    f = request.files.get("logo")
    if not f or not f.filename:
        flash("Choose an image to upload.", "danger")
        return _back(biolink_id)
    try:
        upload_logo(s, biolink, f.read(), f.filename, f.mimetype, u)
    except (QrCodeError, StorageError) as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(biolink_id)
    s.commit()
    flash("Logo uploaded.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/qr/logo/remove")
@require_permission("qr.manage")
def qr_logo_remove(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    remove_logo(s, biolink, u)
    s.commit()
    flash("Logo removed.", "success")
    return _back(biolink_id)


@bp.get("/biolinks/<int:biolink_id>/qr/download/<fmt>")
@require_permission("qr.manage")
def qr_download(biolink_id: int, fmt: str):
    biolink = _owned_biolink(biolink_id)
    try:
        body, mimetype, filename = download(biolink, fmt)
    except QrCodeError:
        abort(404)
    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
