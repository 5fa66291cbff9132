from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.entitlements import EntitlementDenied, can
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.pwa.service import (
    DIRECTIONS,
    DISPLAY_MODES,
    MAX_SCREENSHOTS,
    MAX_SHORTCUTS,
    ORIENTATIONS,
    delete_pwa,
    disable,
    enable,
    generate_manifest,
    install_prompt_delay,
    payload_from_form,
    save_pwa,
    validate_pwa_payload,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned

bp = Blueprint("pwa", __name__)


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


def _back(biolink_id: int):
    return redirect(url_for("pwa.pwa_page", biolink_id=biolink_id))


@bp.get("/biolinks/<int:biolink_id>/pwa")
@require_permission("pwa.manage")
def pwa_page(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    pwa = biolink.pwa
    return render_template(
        "admin/pwa/page.html",
        biolink=biolink,
        pwa=pwa,
        manifest=generate_manifest(biolink, pwa) if pwa is not None else None,
        install_prompt_delay=install_prompt_delay(biolink),
        allowance=can(s, u, "bio.pwa"),
        display_modes=DISPLAY_MODES,
        orientations=ORIENTATIONS,
        directions=DIRECTIONS,
        max_screenshots=MAX_SCREENSHOTS,
        max_shortcuts=MAX_SHORTCUTS,
    )


@bp.post("/biolinks/<int:biolink_id>/pwa")
@require_permission("pwa.manage")
def pwa_save(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)

    payload = payload_from_form(request.form)
    errors = validate_pwa_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back(biolink_id)

    try:
        save_pwa(s, biolink, payload, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(biolink_id)
    s.commit()
    flash("PWA settings saved.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/pwa/enable")
@require_permission("pwa.manage")
def pwa_enable(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    if biolink.pwa is None:
        abort(404)
    enable(s, biolink.pwa, u)
    s.commit()
    flash("PWA enabled.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/pwa/disable")
@require_permission("pwa.manage")
def pwa_disable(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    if biolink.pwa is None:
        abort(404)
    disable(s, biolink.pwa, u)
    s.commit()
    flash("PWA disabled; the manifest is no longer served.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/pwa/delete")
@require_permission("pwa.manage")
def pwa_delete(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    delete_pwa(s, biolink, u)
    s.commit()
    flash("PWA configuration deleted.", "success")
    return _back(biolink_id)
