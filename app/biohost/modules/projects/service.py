from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.biohost.audit import record_event
from app.biohost.modules.projects.models import DEFAULT_PROJECT_COLOR, Project
from app.biohost.utils import clean, get_owned, is_hex_color, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink


DELETE_MODES = ("unassign", "delete")
UNASSIGNED = -1


def validate_project_payload(payload: dict) -> list[str]:
    errors = []
    name = clean(payload.get("name"))
    if not name:
        errors.append("Name is required.")
    elif len(name) > 128:
        errors.append("Name must be 128 characters or fewer.")
    color = clean(payload.get("color"))
    if color and not is_hex_color(color):
        errors.append("Colour must be a hex value like #6366f1.")
    return errors


def create_project(s: "Session", payload: dict, user: "User") -> Project:
    now = datetime.utcnow()
    project = Project(
        user_id=user.id,
        name=clean(payload.get("name")),
        color=(clean(payload.get("color")) or DEFAULT_PROJECT_COLOR).lower(),
        created_at=now,
        updated_at=now,
    )
    s.add(project)
    s.flush()

    record_event(
        s,
        actor=user,
        action="project.create",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"name": project.name},
    )
    return project


def update_project(s: "Session", project: Project, payload: dict, user: "User") -> Project:
    changes = {}

    new_name = clean(payload.get("name"))
    if new_name and new_name != project.name:
        changes["name"] = {"old": project.name, "new": new_name}
        project.name = new_name

    new_color = (clean(payload.get("color")) or project.color).lower()
    if new_color != project.color:
        changes["color"] = {"old": project.color, "new": new_color}
        project.color = new_color

    project.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="project.edit",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"name": project.name, "changes": changes},
    )
    return project


def delete_project(s: "Session", project: Project, user: "User", mode: str = "unassign") -> int:
    """
    Delete a project. mode "unassign" keeps its biolinks (project set to
    null); "delete" removes them too. Returns the number of biolinks affected.
    """
    from app.biohost.modules.biolinks.service import delete_biolink

    if mode not in DELETE_MODES:
        raise ValueError(f"Invalid delete mode. Must be one of: {', '.join(DELETE_MODES)}")

    biolinks = list(project.biolinks)
    if mode == "delete":
        for biolink in biolinks:
            delete_biolink(s, biolink, user)
        s.expire(project, ["biolinks"])
    else:
        for biolink in biolinks:
            biolink.project_id = None
            biolink.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="project.delete",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"name": project.name, "mode": mode, "biolinks": len(biolinks)},
    )
    s.delete(project)
    s.flush()
    return len(biolinks)


def move_biolinks(s: "Session", source: Project, target_id: Any, user: "User") -> int:
    """Move every biolink of source into target (an owned project id, or -1 for unassigned)."""
    target_pk = parse_int(target_id)
    target = None
    if target_pk is not None and target_pk != UNASSIGNED:
        target = get_owned(s, Project, target_pk, user)
        if target is None:
            raise ValueError("Target project not found.")
    if target is not None and target.id == source.id:
        return 0

    biolinks = list(source.biolinks)
    now = datetime.utcnow()
    for biolink in biolinks:
        biolink.project_id = target.id if target else None
        biolink.updated_at = now

    record_event(
        s,
        actor=user,
        action="project.move_biolinks",
        entity_type="Project",
        entity_id=str(source.id),
        metadata={"target_project_id": target.id if target else None, "count": len(biolinks)},
    )
    return len(biolinks)


def assign_biolink(s: "Session", biolink: "BioLink", project: Project | None, user: "User") -> "BioLink":
    old = biolink.project_id
    biolink.project_id = project.id if project else None
    biolink.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="project.assign_biolink",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"old_project_id": old, "new_project_id": biolink.project_id},
    )
    return biolink


def list_projects(s: "Session", user: "User") -> dict[str, Any]:
    from app.biohost.modules.biolinks.models import BioLink

    projects = s.query(Project).filter(Project.user_id == user.id).order_by(Project.name.asc()).all()
    counts = dict(
        s.query(BioLink.project_id, func.count(BioLink.id))
        .filter(BioLink.user_id == user.id)
        .group_by(BioLink.project_id)
        .all()
    )
    return {
        "projects": [(p, int(counts.get(p.id, 0))) for p in projects],
        "unassigned": int(counts.get(None, 0)),
    }
