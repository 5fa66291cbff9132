from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, render_template, request

from app.biohost.db import db_session
from app.biohost.models import User
from app.biohost.modules.analytics.service import (
    PERIOD_LABELS,
    biolink_report,
    clicks_over_time,
    overview,
    resolve_window,
)
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned

bp = Blueprint("analytics", __name__)


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


@bp.get("/analytics")
@require_permission("analytics.view")
def analytics_overview():
    s = db_session()
    u = _current_user()
    report = overview(s, u, request.args.get("period"))
    return render_template("admin/analytics/overview.html", report=report, periods=PERIOD_LABELS)


@bp.get("/biolinks/<int:biolink_id>/analytics")
@require_permission("analytics.view")
def biolink_analytics(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    report = biolink_report(s, biolink, u, request.args.get("period"))
    return render_template(
        "admin/analytics/biolink.html",
        biolink=biolink,
        report=report,
        periods=PERIOD_LABELS,
    )


@bp.get("/biolinks/<int:biolink_id>/analytics/chart.json")
@require_permission("analytics.view")
def biolink_chart(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    window = resolve_window(u, request.args.get("period"))
    chart = clicks_over_time(s, [biolink.id], window["start"], window["end"])
    return jsonify(
        {
            "period": window["period"],
            "label": window["label"],
            "limited": window["limited"],
            "labels": chart["labels"],
            "data": chart["data"],
        }
    )
