from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.biohost.db import db_session
from app.biohost.entitlements import EntitlementDenied, can
from app.biohost.models import User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.domains.models import Domain
from app.biohost.modules.domains.service import (
    DomainVerificationError,
    add_domain,
    check_dns_resolution,
    delete_domain,
    dns_instructions,
    regenerate_token,
    toggle_domain,
    update_domain_settings,
    validate_domain_payload,
    validate_domain_settings,
    verify_domain,
)
from app.biohost.rbac import require_permission
from app.biohost.utils import get_owned

bp = Blueprint("domains", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owned_domain(domain_id: int) -> Domain:
    domain = get_owned(db_session(), Domain, domain_id, _current_user())
    if domain is None:
        abort(404)
    return domain


# ---------- List ----------
@bp.get("/domains")
@require_permission("domains.manage")
def domains_list():
    s = db_session()
    u = _current_user()
    domains = s.query(Domain).filter(Domain.user_id == u.id).order_by(Domain.created_at.desc()).all()
    return render_template(
        "admin/domains/list.html",
        domains=domains,
        allowance=can(s, u, "bio.domains"),
    )


@bp.post("/domains/new")
@require_permission("domains.manage")
def domains_new_post():
    s = db_session()
    u = _current_user()

    payload = {"host": request.form.get("host")}
    errors = validate_domain_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("domains.domains_list"))

    try:
        domain = add_domain(s, payload, u)
    except EntitlementDenied as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("domains.domains_list"))
    s.commit()

    flash(f"{domain.host} added. Add the DNS records below, then verify.", "success")
    return redirect(url_for("domains.domain_detail", domain_id=domain.id))


# ---------- Detail ----------
@bp.get("/domains/<int:domain_id>")
@require_permission("domains.manage")
def domain_detail(domain_id: int):
    s = db_session()
    u = _current_user()
    domain = _owned_domain(domain_id)
    biolinks = (
        s.query(BioLink)
        .filter(BioLink.user_id == u.id, BioLink.type == "biolink")
        .order_by(BioLink.url.asc())
        .all()
    )
    diagnostics = check_dns_resolution(domain.host) if request.args.get("check") == "1" else None
    return render_template(
        "admin/domains/detail.html",
        domain=domain,
        instructions=dns_instructions(domain),
        biolinks=biolinks,
        diagnostics=diagnostics,
    )


@bp.post("/domains/<int:domain_id>/verify")
@require_permission("domains.manage")
def domain_verify(domain_id: int):
    s = db_session()
    u = _current_user()
    domain = _owned_domain(domain_id)
    ok = verify_domain(s, domain, u)
    s.commit()
    if ok:
        flash(f"{domain.host} verified. You can now enable it.", "success")
    else:
        flash("Verification failed. DNS changes can take a while to propagate; try again later.", "danger")
    return redirect(url_for("domains.domain_detail", domain_id=domain_id))


@bp.post("/domains/<int:domain_id>/regenerate-token")
@require_permission("domains.manage")
def domain_regenerate_token(domain_id: int):
    s = db_session()
    u = _current_user()
    domain = _owned_domain(domain_id)
    regenerate_token(s, domain, u)
    s.commit()
    flash("New verification token generated. Update your TXT record.", "success")
    return redirect(url_for("domains.domain_detail", domain_id=domain_id))


@bp.post("/domains/<int:domain_id>/toggle")
@require_permission("domains.manage")
def domain_toggle(domain_id: int):
    s = db_session()
    u = _current_user()
    domain = _owned_domain(domain_id)
    try:
        toggle_domain(s, domain, u)
    except DomainVerificationError as e:
        flash(str(e), "danger")
        return redirect(url_for("domains.domain_detail", domain_id=domain_id))
    s.commit()
    flash(f"{domain.host} {'enabled' if domain.is_enabled else 'disabled'}.", "success")
    return redirect(url_for("domains.domain_detail", domain_id=domain_id))


@bp.post("/domains/<int:domain_id>/settings")
@require_permission("domains.manage")
def domain_settings_post(domain_id: int):
    s = db_session()
    u = _current_user()
    domain = _owned_domain(domain_id)

    payload = {
        "biolink_id": request.form.get("biolink_id"),
        "custom_index_url": request.form.get("custom_index_url"),
        "custom_not_found_url": request.form.get("custom_not_found_url"),
    }
    errors = validate_domain_settings(s, payload, u)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("domains.domain_detail", domain_id=domain_id))

    update_domain_settings(s, domain, payload, u)
    s.commit()
    flash("Domain settings saved.", "success")
    return redirect(url_for("domains.domain_detail", domain_id=domain_id))


@bp.post("/domains/<int:domain_id>/delete")
@require_permission("domains.manage")
def domain_delete(domain_id: int):
    s = db_session()
    u = _current_user()
    domain = _owned_domain(domain_id)
    host = domain.host
    renamed = delete_domain(s, domain, u)
    s.commit()
    flash(f"{host} removed. Links on it moved back to the default domain.", "success")
    if renamed:
        moves = ", ".join(f"/{old} -> /{new}" for old, new in renamed.items())
        flash(f"Renamed to avoid clashes on the default domain: {moves}", "warning")
    return redirect(url_for("domains.domains_list"))
