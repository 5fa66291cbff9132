from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.projects.models import Project
from app.biohost.modules.projects.service import (
    DELETE_MODES,
    UNASSIGNED,
    assign_biolink,
    create_project,
    delete_project,
    list_projects,
    move_biolinks,
    update_project,
    validate_project_payload,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned, parse_int

bp = Blueprint("projects", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owned_project(project_id: int) -> Project:
    project = get_owned(db_session(), Project, project_id, _current_user())
    if project is None:
        abort(404)
    return project


# ---------- List ----------
@bp.get("/projects")
@require_permission("projects.manage")
def projects_list():
    s = db_session()
    u = _current_user()
    listing = list_projects(s, u)
    return render_template("admin/projects/list.html", listing=listing, unassigned=UNASSIGNED, delete_modes=DELETE_MODES)


# ---------- New ----------
@bp.post("/projects/new")
@require_permission("projects.manage")
def projects_new_post():
    s = db_session()
    u = _current_user()

    payload = {
        "name": request.form.get("name"),
        "color": request.form.get("color"),
    }
    errors = validate_project_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("projects.projects_list"))

    project = create_project(s, payload, u)
    s.commit()
    flash(f"Project '{project.name}' created.", "success")
    return redirect(url_for("projects.projects_list"))


# ---------- Edit ----------
@bp.post("/projects/<int:project_id>/edit")
@require_permission("projects.manage")
def project_edit_post(project_id: int):
    s = db_session()
    u = _current_user()
    project = _owned_project(project_id)

    payload = {
        "name": request.form.get("name"),
        "color": request.form.get("color"),
    }
    errors = validate_project_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("projects.projects_list"))

    update_project(s, project, payload, u)
    s.commit()
    flash("Project updated.", "success")
    return redirect(url_for("projects.projects_list"))


# ---------- Delete ----------
@bp.post("/projects/<int:project_id>/delete")
@require_permission("projects.manage")
def project_delete(project_id: int):
    s = db_session()
    u = _current_user()
    project = _owned_project(project_id)
    mode = (request.form.get("mode") or "unassign").strip()
    name = project.name

    try:
        n = delete_project(s, project, u, mode)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("projects.projects_list"))
    s.commit()

    if mode == "delete":
        flash(f"Project '{name}' and {n} link(s) deleted.", "success")
    else:
        flash(f"Project '{name}' deleted; {n} link(s) moved to unassigned.", "success")
    return redirect(url_for("projects.projects_list"))


# ---------- Move ----------
@bp.post("/projects/<int:project_id>/move")
@require_permission("projects.manage")
def project_move_biolinks(project_id: int):
    s = db_session()
    u = _current_user()
    project = _owned_project(project_id)
    try:
        n = move_biolinks(s, project, request.form.get("target_project_id"), u)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("projects.projects_list"))
    s.commit()
    flash(f"Moved {n} link(s).", "success")
    return redirect(url_for("projects.projects_list"))


@bp.post("/projects/assign")
@require_permission("projects.manage")
def project_assign():
    """Drag-drop target: {biolink_id, project_id} where project_id -1/empty means unassigned."""
    s = db_session()
    u = _current_user()
    body = request.get_json(silent=True) or request.form

    biolink = get_owned(s, BioLink, body.get("biolink_id"), u)
    if biolink is None:
        return jsonify({"ok": False, "error": "Link not found."}), 404
    project_id = parse_int(body.get("project_id"))
    project = None
    if project_id is not None and project_id != UNASSIGNED:
        project = get_owned(s, Project, project_id, u)
        if project is None:
            return jsonify({"ok": False, "error": "Project not found."}), 404

    assign_biolink(s, biolink, project, u)
    s.commit()
    return jsonify({"ok": True, "biolink_id": biolink.id, "project_id": biolink.project_id})
