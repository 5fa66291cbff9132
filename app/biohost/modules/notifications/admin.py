from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.entitlements import EntitlementDenied, can
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.notifications.models import EVENTS, HANDLER_TYPES, NotificationHandler
from app.biohost.modules.notifications.service import (
    create_handler,
    delete_handler,
    handler_payload_from_form,
    reset_failures,
    send_test,
    toggle_handler,
    update_handler,
    validate_handler_payload,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned

bp = Blueprint("notifications", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owned(biolink_id: int, handler_id: int | None = None) -> tuple[BioLink, NotificationHandler | None]:
    s = db_session()
    biolink = get_owned(s, BioLink, biolink_id, _current_user())
    if biolink is None:
        abort(404)
    if handler_id is None:
        return biolink, None
    handler = s.get(NotificationHandler, handler_id)
    if handler is None or handler.biolink_id != biolink.id:
        abort(404)
    return biolink, handler


def _back(biolink_id: int):
    return redirect(url_for("notifications.handlers_list", biolink_id=biolink_id))


# ---------- List ----------
@bp.get("/biolinks/<int:biolink_id>/notifications")
@require_permission("notifications.manage")
def handlers_list(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink, _ = _owned(biolink_id)
    handlers = sorted(biolink.notification_handlers, key=lambda h: h.created_at, reverse=True)
    return render_template(
        "admin/notifications/list.html",
        biolink=biolink,
        handlers=handlers,
        handler_types=HANDLER_TYPES,
        events=EVENTS,
        allowance=can(s, u, "bio.notifications", scope_id=biolink.id),
    )


# ---------- New ----------
@bp.post("/biolinks/<int:biolink_id>/notifications/new")
@require_permission("notifications.manage")
def handlers_new_post(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink, _ = _owned(biolink_id)

    payload = handler_payload_from_form(request.form)
    errors = validate_handler_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back(biolink_id)

    try:
        handler = create_handler(s, biolink, payload, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(biolink_id)
    s.commit()
    flash(f"Notification handler '{handler.name}' created.", "success")
    return _back(biolink_id)


# ---------- Edit ----------
@bp.get("/biolinks/<int:biolink_id>/notifications/<int:handler_id>")
@require_permission("notifications.manage")
def handler_edit_get(biolink_id: int, handler_id: int):
    biolink, handler = _owned(biolink_id, handler_id)
    return render_template(
        "admin/notifications/edit.html",
        biolink=biolink,
        handler=handler,
        handler_types=HANDLER_TYPES,
        events=EVENTS,
    )


@bp.post("/biolinks/<int:biolink_id>/notifications/<int:handler_id>/edit")
@require_permission("notifications.manage")
def handler_edit_post(biolink_id: int, handler_id: int):
    s = db_session()
    u = _current_user()
    biolink, handler = _owned(biolink_id, handler_id)

    payload = handler_payload_from_form(request.form)
    payload["type"] = handler.type
    # Secrets are never echoed back into the form; blank means keep.
    for secret_key in ("secret", "bot_token"):
        if not (payload.get(secret_key) or "").strip():
            payload[secret_key] = handler.get_setting(secret_key)
    errors = validate_handler_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("notifications.handler_edit_get", biolink_id=biolink_id, handler_id=handler_id))

    update_handler(s, handler, payload, u)
    s.commit()
    flash("Notification handler updated.", "success")
    return _back(biolink_id)


# ---------- Actions ----------
@bp.post("/biolinks/<int:biolink_id>/notifications/<int:handler_id>/toggle")
@require_permission("notifications.manage")
def handler_toggle(biolink_id: int, handler_id: int):
    s = db_session()
    u = _current_user()
    _biolink, handler = _owned(biolink_id, handler_id)
    toggle_handler(s, handler, u)
    s.commit()
    flash(f"'{handler.name}' {'enabled' if handler.is_enabled else 'disabled'}.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/notifications/<int:handler_id>/reset")
@require_permission("notifications.manage")
def handler_reset(biolink_id: int, handler_id: int):
    s = db_session()
    u = _current_user()
    _biolink, handler = _owned(biolink_id, handler_id)
    reset_failures(s, handler, u)
    s.commit()
    flash(f"Failure count for '{handler.name}' reset.", "success")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/notifications/<int:handler_id>/test")
@require_permission("notifications.manage")
def handler_test(biolink_id: int, handler_id: int):
    s = db_session()
    u = _current_user()
    _biolink, handler = _owned(biolink_id, handler_id)
    ok = send_test(s, handler, u)
    s.commit()
    if ok:
        flash(f"Test notification sent via '{handler.name}'.", "success")
    else:
        flash(f"Test notification via '{handler.name}' failed. Check the settings and try again.", "danger")
    return _back(biolink_id)


@bp.post("/biolinks/<int:biolink_id>/notifications/<int:handler_id>/delete")
@require_permission("notifications.manage")
def handler_delete(biolink_id: int, handler_id: int):
    s = db_session()
    u = _current_user()
    _biolink, handler = _owned(biolink_id, handler_id)
    name = handler.name
    delete_handler(s, handler, u)
    s.commit()
    flash(f"Notification handler '{name}' deleted.", "success")
    return _back(biolink_id)
