from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.entitlements import EntitlementDenied
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.biolinks.service import normalise_slug, validate_slug
from app.biohost.modules.page_templates.models import Template
from app.biohost.modules.page_templates.service import (
    TemplateError,
    apply_template,
    available_templates,
    categories,
    create_from_template,
    delete_template,
    get_visible_template,
    preview,
    save_as_template,
    validate_template_payload,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import flag, get_owned

bp = Blueprint("page_templates", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _visible_template(template_id: int) -> Template:
    template = get_visible_template(db_session(), template_id, _current_user())
    if template is None:
        abort(404)
    return template


def _placeholder_values(template: Template) -> dict[str, str]:
    """Form fields named value_<key> for each placeholder the template declares."""
    return {k: (request.form.get(f"value_{k}") or "").strip() for k in (template.placeholders or {})}


# ---------- Gallery ----------
@bp.get("/templates")
@require_permission("templates.manage")
def templates_list():
    s = db_session()
    u = _current_user()
    category = (request.args.get("category") or "").strip()
    search = (request.args.get("q") or "").strip()
    return render_template(
        "admin/templates/list.html",
        templates=available_templates(s, u, category=category or None, search=search or None),
        categories=categories(s, u),
        category_filter=category,
        search=search,
    )


@bp.get("/templates/<int:template_id>")
@require_permission("templates.manage")
def template_detail(template_id: int):
    s = db_session()
    u = _current_user()
    template = _visible_template(template_id)
    biolinks = (
        s.query(BioLink)
        .filter(BioLink.user_id == u.id, BioLink.type == "biolink")
        .order_by(BioLink.url.asc())
        .all()
    )
    return render_template("admin/templates/detail.html", template=template, biolinks=biolinks)


@bp.get("/templates/<int:template_id>/preview")
@require_permission("templates.manage")
def template_preview(template_id: int):
    template = _visible_template(template_id)
    values = {k: v for k, v in request.args.items() if k in (template.placeholders or {})}
    return jsonify(preview(template, values))


# ---------- Use ----------
@bp.post("/templates/<int:template_id>/use")
@require_permission("biolinks.create")
def template_use(template_id: int):
    """Create a new bio page from the template."""
    s = db_session()
    u = _current_user()
    template = _visible_template(template_id)

    slug = normalise_slug(request.form.get("url"))
    if slug:
        errors = validate_slug(s, slug, None)
        if errors:
            for e in errors:
                flash(e, "danger")
            return redirect(url_for("page_templates.template_detail", template_id=template_id))

    try:
        biolink = create_from_template(s, u, template, slug or None, _placeholder_values(template))
    except (TemplateError, EntitlementDenied) as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("page_templates.template_detail", template_id=template_id))
    s.commit()
    flash(f"Created /{biolink.url} from '{template.name}'.", "success")
    return redirect(url_for("editor.editor_page", biolink_id=biolink.id))


@bp.post("/templates/<int:template_id>/apply")
@require_permission("templates.manage")
def template_apply(template_id: int):
    s = db_session()
    u = _current_user()
    template = _visible_template(template_id)
    biolink = get_owned(s, BioLink, request.form.get("biolink_id"), u)
    if biolink is None:
        abort(404)
    try:
        n = apply_template(
            s,
            biolink,
            template,
            u,
            _placeholder_values(template),
            replace_existing=flag(request.form.get("replace_existing", "1")),
        )
    except (TemplateError, EntitlementDenied) as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("page_templates.template_detail", template_id=template_id))
    s.commit()
    flash(f"Applied '{template.name}' to /{biolink.url} ({n} blocks).", "success")
    return redirect(url_for("editor.editor_page", biolink_id=biolink.id))


# ---------- Custom templates ----------
@bp.post("/biolinks/<int:biolink_id>/save-as-template")
@require_permission("templates.manage")
def template_save_from_biolink(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = get_owned(s, BioLink, biolink_id, u)
    if biolink is None:
        abort(404)
    payload = {
        "name": request.form.get("name"),
        "category": request.form.get("category"),
        "description": request.form.get("description"),
    }
    errors = validate_template_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("editor.editor_page", biolink_id=biolink_id))
    try:
        template = save_as_template(s, biolink, payload, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("editor.editor_page", biolink_id=biolink_id))
    s.commit()
    flash(f"Saved as template '{template.name}'.", "success")
    return redirect(url_for("page_templates.template_detail", template_id=template.id))


@bp.post("/templates/<int:template_id>/delete")
@require_permission("templates.manage")
def template_delete(template_id: int):
    s = db_session()
    u = _current_user()
    template = _visible_template(template_id)
    name = template.name
    try:
        delete_template(s, template, u)
    except TemplateError as e:
        flash(str(e), "danger")
        return redirect(url_for("page_templates.template_detail", template_id=template_id))
    s.commit()
    flash(f"Template '{name}' deleted.", "success")
    return redirect(url_for("page_templates.templates_list"))
