from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.entitlements import EntitlementDenied
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.themes.models import CATEGORIES, Theme
from app.biohost.modules.themes.service import (
    BACKGROUND_TYPES,
    BORDER_RADII,
    FONTS,
    ThemeError,
    apply_theme,
    available_themes,
    background_css,
    create_custom_theme,
    css_string,
    default_settings,
    delete_custom_theme,
    duplicate_theme,
    get_visible_theme,
    remove_theme,
    toggle_favourite,
    update_custom_theme,
    validate_theme_payload,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned

bp = Blueprint("themes", __name__)

THEME_FORM_FIELDS = (
    "name",
    "category",
    "description",
    "background_type",
    "background_color",
    "gradient_start",
    "gradient_end",
    "text_color",
    "button_background_color",
    "button_text_color",
    "button_border_radius",
    "button_border_width",
    "button_border_color",
    "font_family",
)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _visible_theme(theme_id: int) -> Theme:
    theme = get_visible_theme(db_session(), theme_id, _current_user())
    if theme is None:
        abort(404)
    return theme


def _form_context() -> dict:
    return {
        "categories": CATEGORIES,
        "fonts": FONTS,
        "border_radii": BORDER_RADII,
        "background_types": BACKGROUND_TYPES,
        "css_string": css_string,
        "background_css": background_css,
    }


# ---------- Gallery ----------
@bp.get("/themes")
@require_permission("themes.manage")
def themes_list():
    s = db_session()
    u = _current_user()
    category = (request.args.get("category") or "").strip()
    search = (request.args.get("q") or "").strip()
    themes = available_themes(s, u, category=category or None, search=search or None)
    biolinks = (
        s.query(BioLink)
        .filter(BioLink.user_id == u.id, BioLink.type == "biolink")
        .order_by(BioLink.url.asc())
        .all()
    )
    return render_template(
        "admin/themes/list.html",
        themes=themes,
        biolinks=biolinks,
        category_filter=category,
        search=search,
        **_form_context(),
    )


@bp.post("/themes/<int:theme_id>/favourite")
@require_permission("themes.manage")
def theme_favourite(theme_id: int):
    s = db_session()
    u = _current_user()
    theme = _visible_theme(theme_id)
    favourited = toggle_favourite(s, theme, u)
    s.commit()
    if request.is_json or request.headers.get("Accept") == "application/json":
        return jsonify({"ok": True, "favourited": favourited})
    return redirect(request.referrer or url_for("themes.themes_list"))


# ---------- Apply ----------
@bp.post("/themes/<int:theme_id>/apply")
@require_permission("themes.manage")
def theme_apply(theme_id: int):
    s = db_session()
    u = _current_user()
    theme = _visible_theme(theme_id)
    biolink = get_owned(s, BioLink, request.form.get("biolink_id"), u)
    if biolink is None:
        abort(404)
    try:
        apply_theme(s, biolink, theme, u)
    except ThemeError as e:
        flash(str(e), "danger")
        return redirect(request.referrer or url_for("themes.themes_list"))
    s.commit()
    flash(f"Theme '{theme.name}' applied to /{biolink.url}.", "success")
    return redirect(request.referrer or url_for("editor.editor_page", biolink_id=biolink.id))


@bp.post("/biolinks/<int:biolink_id>/theme/remove")
@require_permission("themes.manage")
def theme_remove(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = get_owned(s, BioLink, biolink_id, u)
    if biolink is None:
        abort(404)
    remove_theme(s, biolink, u)
    s.commit()
    flash("Theme removed; the page uses the default look.", "success")
    return redirect(request.referrer or url_for("editor.editor_page", biolink_id=biolink.id))


# ---------- Custom themes ----------
@bp.get("/themes/new")
@require_permission("themes.manage")
def theme_new_get():
    return render_template("admin/themes/edit.html", theme=None, settings=default_settings(), **_form_context())


@bp.post("/themes/new")
@require_permission("themes.manage")
def theme_new_post():
    s = db_session()
    u = _current_user()
    payload = {k: request.form.get(k) for k in THEME_FORM_FIELDS}
    errors = validate_theme_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("themes.theme_new_get"))
    try:
        theme = create_custom_theme(s, payload, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("themes.themes_list"))
    s.commit()
    flash(f"Theme '{theme.name}' created.", "success")
    return redirect(url_for("themes.themes_list"))


@bp.get("/themes/<int:theme_id>/edit")
@require_permission("themes.manage")
def theme_edit_get(theme_id: int):
    u = _current_user()
    theme = _visible_theme(theme_id)
    if theme.is_system or theme.user_id != u.id:
        abort(404)
    return render_template("admin/themes/edit.html", theme=theme, settings=theme.settings, **_form_context())


@bp.post("/themes/<int:theme_id>/edit")
@require_permission("themes.manage")
def theme_edit_post(theme_id: int):
    s = db_session()
    u = _current_user()
    theme = _visible_theme(theme_id)
    payload = {k: request.form.get(k) for k in THEME_FORM_FIELDS}
    errors = validate_theme_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("themes.theme_edit_get", theme_id=theme_id))
    try:
        update_custom_theme(s, theme, payload, u)
    except ThemeError as e:
        flash(str(e), "danger")
        return redirect(url_for("themes.themes_list"))
    s.commit()
    flash("Theme updated.", "success")
    return redirect(url_for("themes.themes_list"))


@bp.post("/themes/<int:theme_id>/duplicate")
@require_permission("themes.manage")
def theme_duplicate(theme_id: int):
    s = db_session()
    u = _current_user()
    theme = _visible_theme(theme_id)
    try:
        clone = duplicate_theme(s, theme, u)
    except (ThemeError, EntitlementDenied) as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("themes.themes_list"))
    s.commit()
    flash(f"Created '{clone.name}'.", "success")
    return redirect(url_for("themes.theme_edit_get", theme_id=clone.id))


@bp.post("/themes/<int:theme_id>/delete")
@require_permission("themes.manage")
def theme_delete(theme_id: int):
    s = db_session()
    u = _current_user()
    theme = _visible_theme(theme_id)
    name = theme.name
    try:
        delete_custom_theme(s, theme, u)
    except ThemeError as e:
        flash(str(e), "danger")
        return redirect(url_for("themes.themes_list"))
    s.commit()
    flash(f"Theme '{name}' deleted.", "success")
    return redirect(url_for("themes.themes_list"))
