from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.entitlements import EntitlementDenied
from app.biohost.modules.analytics.targeting import form_options, rules_from_form, validate_rules
from app.biohost.models import User
from app.biohost.modules.biolinks.ics import build_event_settings, default_event_dates
from app.biohost.modules.biolinks.models import LINK_TYPES, BioLink
from app.biohost.modules.biolinks.service import (
    ALLOWED_FILE_EXTENSIONS,
    UNASSIGNED,
    build_file_password_settings,
    build_short_link_settings,
    build_static_settings,
    create_biolink,
    create_event,
    create_file_link,
    create_short_link,
    create_static_page,
    create_vcard,
    delete_biolink,
    duplicate_biolink,
    entitlement_summary,
    list_biolinks,
    move_biolink,
    store_vcard_photo,
    toggle_biolink,
    update_biolink,
    validate_biolink_payload,
    validate_biolink_update,
    validate_event,
    validate_file_upload,
    validate_short_link_payload,
    validate_short_link_settings,
    validate_static_payload,
    validate_vcard,
)
from app.biohost.modules.biolinks.vcard import SOCIAL_NETWORKS, build_vcard_settings
from app.biohost.modules.domains.models import Domain
from app.biohost.modules.projects.models import Project
from app.biohost.rbac import require_permission
from app.biohost.storage import StorageError
from app.biohost.utils import get_owned, parse_int

bp = Blueprint("biolinks", __name__)


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


def _form_options(s, u: User) -> dict:
    projects = s.query(Project).filter(Project.user_id == u.id).order_by(Project.name.asc()).all()
    domains = (
        s.query(Domain)
        .filter(Domain.user_id == u.id, Domain.verification_status == "verified", Domain.is_enabled.is_(True))
        .order_by(Domain.host.asc())
        .all()
    )
    return {"projects": projects, "domains": domains}


def _upload(field: str) -> tuple[bytes, str, str] | None:
    f = request.files.get(field)
    if not f or not f.filename:
        return None
    return f.read(), f.filename, f.mimetype or "application/octet-stream"


# ---------- List ----------
@bp.get("/biolinks")
@require_permission("biolinks.view")
def biolinks_list():
    s = db_session()
    u = _current_user()

    search = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    project = (request.args.get("project") or "").strip()
    link_type = (request.args.get("type") or "").strip()
    page = parse_int(request.args.get("page"), 1)

    result = list_biolinks(
        s,
        u,
        search=search,
        status=status or None,
        project=project or None,
        link_type=link_type if link_type in LINK_TYPES else None,
        page=page,
    )
    return render_template(
        "admin/biolinks/list.html",
        result=result,
        search=search,
        status=status,
        project_filter=project,
        type_filter=link_type,
        link_types=LINK_TYPES,
        unassigned=UNASSIGNED,
        entitlements=entitlement_summary(s, u),
        **_form_options(s, u),
    )


# ---------- New ----------
@bp.get("/biolinks/new")
@require_permission("biolinks.create")
def biolinks_new_get():
    s = db_session()
    u = _current_user()
    link_type = (request.args.get("type") or "biolink").strip()
    if link_type not in LINK_TYPES:
        abort(404)
    return render_template(
        "admin/biolinks/new.html",
        link_type=link_type,
        link_types=LINK_TYPES,
        allowed_extensions=sorted(ALLOWED_FILE_EXTENSIONS),
        social_networks=SOCIAL_NETWORKS,
        event_defaults=default_event_dates(),
        **_form_options(s, u),
    )


@bp.post("/biolinks/new")
@require_permission("biolinks.create")
def biolinks_new_post():
    s = db_session()
    u = _current_user()

    link_type = (request.form.get("type") or "biolink").strip()
    payload = request.form.to_dict()
    back = redirect(url_for("biolinks.biolinks_new_get", type=link_type))

    upload = None
    if link_type == "link":
        errors = validate_short_link_payload(s, payload, u)
    else:
        errors = validate_biolink_payload(s, payload, u, link_type)
        if link_type == "file":
            upload = _upload("file")
            errors.extend(validate_file_upload(upload[1] if upload else None, len(upload[0]) if upload else 0))
        elif link_type == "vcard":
            upload = _upload("photo")
            errors.extend(validate_vcard(payload, upload))
        elif link_type == "event":
            errors.extend(validate_event(payload))
        elif link_type == "static":
            errors.extend(validate_static_payload(payload))
    if errors:
        for e in errors:
            flash(e, "danger")
        return back

    try:
        if link_type == "link":
            biolink = create_short_link(s, payload, u)
        elif link_type == "file":
            data, filename, content_type = upload
            biolink = create_file_link(s, payload, u, data, filename, content_type)
        elif link_type == "vcard":
            biolink = create_vcard(s, payload, u, photo=upload)
        elif link_type == "event":
            biolink = create_event(s, payload, u)
        elif link_type == "static":
            biolink = create_static_page(s, payload, u)
        else:
            biolink = create_biolink(s, payload, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return back
    except StorageError as e:
        s.rollback()
        flash(f"Upload failed: {e}", "danger")
        return back
    s.commit()

    flash(f"{biolink.type_label} created: /{biolink.url}", "success")
    if biolink.type == "biolink":
        return redirect(url_for("editor.editor_page", biolink_id=biolink.id))
    return redirect(url_for("biolinks.biolink_edit_get", biolink_id=biolink.id))


# ---------- Edit ----------
@bp.get("/biolinks/<int:biolink_id>")
@require_permission("biolinks.view")
def biolink_edit_get(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    return render_template(
        "admin/biolinks/edit.html",
        biolink=biolink,
        social_networks=SOCIAL_NETWORKS,
        targeting_options=form_options(),
        **_form_options(s, u),
    )


def _type_settings(biolink: BioLink, payload: dict) -> tuple[list[str], dict]:
    """Validate and build the type-specific settings keys from the edit form."""
    if biolink.type == "link":
        settings = build_short_link_settings(payload, biolink.settings)
        if "targeting_form" not in request.form:
            return [], settings
        rules = rules_from_form(request.form, "targeting")
        errors = validate_rules(rules)
        settings["targeting"] = rules
        return errors, {} if errors else settings
    if biolink.type == "file":
        return [], build_file_password_settings(payload, biolink.settings)
    if biolink.type == "vcard":
        photo = _upload("photo")
        errors = validate_vcard(payload, photo)
        if errors:
            return errors, {}
        vcard = build_vcard_settings(payload)
        vcard["photo_path"] = biolink.get_setting("vcard.photo_path")
        if photo is not None:
            vcard["photo_path"] = store_vcard_photo(biolink, *photo)
        return [], {"vcard": vcard}
    if biolink.type == "event":
        errors = validate_event(payload)
        return errors, {} if errors else {"event": build_event_settings(payload)}
    if biolink.type == "static":
        errors = validate_static_payload(payload)
        return errors, {} if errors else {"static": build_static_settings(payload)}
    return [], {}


@bp.post("/biolinks/<int:biolink_id>/edit")
@require_permission("biolinks.edit")
def biolink_edit_post(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)

    payload = request.form.to_dict()
    payload["is_enabled"] = request.form.get("is_enabled")
    errors = validate_biolink_update(s, biolink, payload, u)
    if biolink.type == "link":
        errors.extend(validate_short_link_settings(payload))
    if not errors:
        try:
            type_errors, settings = _type_settings(biolink, payload)
        except StorageError as e:
            type_errors, settings = [f"Upload failed: {e}"], {}
        errors.extend(type_errors)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("biolinks.biolink_edit_get", biolink_id=biolink_id))

    update_biolink(s, biolink, payload, u, settings=settings)
    s.commit()

    flash("Settings saved.", "success")
    return redirect(url_for("biolinks.biolink_edit_get", biolink_id=biolink_id))


# ---------- Actions ----------
@bp.post("/biolinks/<int:biolink_id>/toggle")
@require_permission("biolinks.edit")
def biolink_toggle(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    toggle_biolink(s, biolink, u)
    s.commit()
    flash(f"/{biolink.url} {'enabled' if biolink.is_enabled else 'disabled'}.", "success")
    return redirect(request.referrer or url_for("biolinks.biolinks_list"))


@bp.post("/biolinks/<int:biolink_id>/delete")
@require_permission("biolinks.delete")
def biolink_delete(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    url = biolink.url
    delete_biolink(s, biolink, u)
    s.commit()
    flash(f"/{url} deleted.", "success")
    return redirect(url_for("biolinks.biolinks_list"))


@bp.post("/biolinks/<int:biolink_id>/duplicate")
@require_permission("biolinks.create")
def biolink_duplicate(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    try:
        clone = duplicate_biolink(s, biolink, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("biolinks.biolinks_list"))
    except (StorageError, OSError) as e:
        s.rollback()
        flash(f"Could not copy stored files: {e}", "danger")
        return redirect(url_for("biolinks.biolinks_list"))
    s.commit()
    flash(f"Duplicated as /{clone.url}.", "success")
    return redirect(url_for("biolinks.biolink_edit_get", biolink_id=clone.id))


@bp.post("/biolinks/<int:biolink_id>/move")
@require_permission("biolinks.edit")
def biolink_move(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    try:
        move_biolink(s, biolink, request.form.get("project_id"), u)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(request.referrer or url_for("biolinks.biolinks_list"))
    s.commit()
    flash("Moved.", "success")
    return redirect(request.referrer or url_for("biolinks.biolinks_list"))
