from __future__ import annotations

import csv
import io
from datetime import date

from flask import Blueprint, abort, flash, g, redirect, render_template, request, send_file, url_for

from app.biohost.audit import record_event
from app.biohost.db import db_session
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.editor.blocks import COLLECTOR_BLOCK_TYPES, get_block_type
from app.biohost.modules.submissions.models import SUBMISSION_TYPES, Submission
from app.biohost.modules.submissions.service import (
    delete_submission,
    export_rows,
    parse_filters,
    query_submissions,
    type_counts,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned

bp = Blueprint("submissions", __name__)

PAGE_SIZE = 50


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


def _block_names(biolink: BioLink) -> dict[int, str]:
    names = {}
    for block in biolink.blocks:
        if block.type in COLLECTOR_BLOCK_TYPES:
            bt = get_block_type(block.type)
            label = (block.settings or {}).get("name") or (bt.name if bt else block.type)
            names[block.id] = f"{label} ({block.hlcrf_id})"
    return names


@bp.get("/biolinks/<int:biolink_id>/submissions")
@require_permission("biolinks.view")
def submissions_list(biolink_id: int):
    s = db_session()
    biolink = _owned_biolink(biolink_id)
    filters = parse_filters(request.args)
    q = query_submissions(s, biolink, filters)
    return render_template(
        "admin/submissions/list.html",
        biolink=biolink,
        submissions=q.limit(PAGE_SIZE).all(),
        total=q.count(),
        counts=type_counts(s, biolink),
        filters=filters,
        types=SUBMISSION_TYPES,
        block_names=_block_names(biolink),
    )


@bp.get("/biolinks/<int:biolink_id>/submissions/export")
@require_permission("biolinks.view")
def submissions_export(biolink_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    filters = parse_filters(request.args)
    submissions = query_submissions(s, biolink, filters).all()

    out = io.StringIO()
    w = csv.writer(out)
    w.writerows(export_rows(submissions, _block_names(biolink)))

    record_event(
        s,
        actor=u,
        action="submission.export",
        entity_type="BioLink",
        entity_id=str(biolink.id),
        metadata={"filters": filters, "row_count": len(submissions)},
    )
    s.commit()

    data = out.getvalue().encode("utf-8")
    filename = f"{biolink.url}_submissions_{date.today().strftime('%Y%m%d')}.csv"
    return send_file(io.BytesIO(data), mimetype="text/csv", as_attachment=True, download_name=filename)


@bp.post("/biolinks/<int:biolink_id>/submissions/<int:submission_id>/delete")
@require_permission("biolinks.edit")
def submission_delete(biolink_id: int, submission_id: int):
    s = db_session()
    u = _current_user()
    biolink = _owned_biolink(biolink_id)
    submission = s.get(Submission, submission_id)
    if submission is None or submission.biolink_id != biolink.id:
        abort(404)
    delete_submission(s, submission, u)
    s.commit()
    flash("Submission deleted.", "success")
    return redirect(url_for("submissions.submissions_list", biolink_id=biolink.id))
