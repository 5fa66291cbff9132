from datetime import date, datetime, time, timedelta

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.biohost import entitlements
from app.biohost.db import db_session
from app.biohost.models import AuditEvent, Role, User
from app.biohost.rbac import require_permission, user_permission_keys
from app.biohost.utils import is_valid_email, parse_int

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _system_status(s) -> dict:
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    status = {
        "env": (current_app.config.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": current_app.config.get("STORAGE_BACKEND") or "local",
        "storage_configured": True,
        "storage_error": None,
    }

    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except SQLAlchemyError as e:
        status["db_error"] = str(e)

    # No network calls here; create_app already checked the bucket.
    if status["storage_backend"] == "s3":
        missing = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not current_app.config.get(key)
        ]
        status["storage_configured"] = not missing
        if missing:
            status["storage_error"] = f"Missing: {', '.join(missing)}"
    return status


# ---------- Dashboard ----------
@bp.get("/")
@require_permission("biolinks.view")
def index():
    from app.biohost.modules.biolinks.models import LINK_TYPES
    from app.biohost.modules.biolinks.service import biolink_stats, entitlement_summary, type_counts

    s = db_session()
    u = _current_user()
    recent = (
        s.query(AuditEvent)
        .filter(AuditEvent.actor_user_id == u.id)
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .limit(10)
        .all()
    )
    return render_template(
        "admin/index.html",
        type_counts=type_counts(s, u),
        link_types=LINK_TYPES,
        stats=biolink_stats(s, u),
        entitlement_summary=entitlement_summary(s, u),
        recent_events=recent,
        system_status=_system_status(s),
    )


@bp.get("/me")
@require_permission("biolinks.view")
def me():
    user = _current_user()
    role_keys = sorted({r.key for r in (user.roles or [])})
    checks = [entitlements.can(db_session(), user, code) for code in entitlements.FEATURES]
    return render_template(
        "admin/me.html",
        user=user,
        role_keys=role_keys,
        perm_keys=sorted(user_permission_keys(user)),
        checks=checks,
    )


# ---------- Audit ----------
@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """
    Audit trail (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


@bp.get("/login")
def login_redirect():
    return redirect(url_for("auth.login_get"))


# ---------- Entitlements ----------
@bp.get("/entitlements/<int:user_id>")
@require_permission("admin.view")
def entitlements_get(user_id: int):
    s = db_session()
    account = s.get(User, user_id)
    if not account:
        abort(404)
    overrides = {row.feature_code: row for row in account.entitlements}
    rows = []
    for code, (label, default_enabled, default_limit) in entitlements.FEATURES.items():
        rows.append(
            {
                "code": code,
                "label": label,
                "default_enabled": default_enabled,
                "default_limit": default_limit,
                "override": overrides.get(code),
                "check": entitlements.can(s, account, code),
            }
        )
    return render_template("admin/entitlements.html", account=account, rows=rows)


@bp.post("/entitlements/<int:user_id>")
@require_permission("admin.view")
def entitlements_post(user_id: int):
    from app.biohost.audit import record_event

    s = db_session()
    u = _current_user()
    account = s.get(User, user_id)
    if not account:
        abort(404)

    changes = {}
    errors = []
    for code in entitlements.FEATURES:
        field = code.replace(".", "_")
        raw_limit = (request.form.get(f"{field}_limit") or "").strip()
        limit = parse_int(raw_limit)
        if raw_limit and (limit is None or limit < 0):
            errors.append(f"{code}: limit must be a whole number, or blank for unlimited.")
            continue
        enabled = request.form.get(f"{field}_enabled") == "1"
        entitlements.set_entitlement(s, account, code, enabled=enabled, limit=limit)
        changes[code] = {"enabled": enabled, "limit": limit}

    if errors:
        s.rollback()
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.entitlements_get", user_id=user_id))

    record_event(
        s,
        actor=u,
        action="entitlements.update",
        entity_type="User",
        entity_id=str(account.id),
        metadata={"email": account.email, "entitlements": changes},
    )
    s.commit()
    flash(f"Entitlements updated for {account.email}.", "success")
    return redirect(url_for("admin.entitlements_get", user_id=user_id))


# ---------- Accounts ----------
@bp.get("/accounts")
@require_permission("admin.edit")
def accounts_list():
    s = db_session()
    users = s.query(User).order_by(User.email.asc()).all()
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return render_template("admin/accounts/list.html", users=users, roles=roles)


@bp.get("/accounts/new")
@require_permission("admin.edit")
def accounts_new_get():
    s = db_session()
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return render_template("admin/accounts/new.html", roles=roles)


@bp.post("/accounts/new")
@require_permission("admin.edit")
def accounts_new_post():
    from werkzeug.security import generate_password_hash
    from app.biohost.audit import record_event

    s = db_session()
    u = _current_user()

    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    password_confirm = request.form.get("password_confirm") or ""
    role_ids = request.form.getlist("role_ids")

    errors = []
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    elif s.query(User).filter(User.email == email).one_or_none():
        errors.append("An account with this email already exists.")

    errors.extend(_password_errors(password, password_confirm))

    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.accounts_new_get"))

    new_user = User(email=email, password_hash=generate_password_hash(password), is_active=True)
    s.add(new_user)
    s.flush()

    ids = [i for i in (parse_int(r) for r in role_ids) if i is not None]
    if ids:
        for role in s.query(Role).filter(Role.id.in_(ids)).all():
            new_user.roles.append(role)

    record_event(
        s,
        actor=u,
        action="user.create",
        entity_type="User",
        entity_id=str(new_user.id),
        metadata={"email": email, "roles": [r.key for r in new_user.roles]},
    )
    s.commit()
    flash(f"Account created for {email}.", "success")
    return redirect(url_for("admin.accounts_list"))


@bp.get("/accounts/<int:user_id>")
@require_permission("admin.edit")
def accounts_detail(user_id: int):
    s = db_session()
    account = s.get(User, user_id)
    if not account:
        abort(404)
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return render_template("admin/accounts/detail.html", account=account, roles=roles)


@bp.post("/accounts/<int:user_id>/update")
@require_permission("admin.edit")
def accounts_update(user_id: int):
    from app.biohost.audit import record_event

    s = db_session()
    u = _current_user()
    account = s.get(User, user_id)
    if not account:
        abort(404)

    if account.id == u.id:
        flash("You cannot modify your own account from this page.", "danger")
        return redirect(url_for("admin.accounts_detail", user_id=user_id))

    before = {"is_active": account.is_active, "roles": [r.key for r in account.roles]}

    account.is_active = request.form.get("is_active") == "1"
    account.roles.clear()
    ids = [i for i in (parse_int(r) for r in request.form.getlist("role_ids")) if i is not None]
    if ids:
        for role in s.query(Role).filter(Role.id.in_(ids)).all():
            account.roles.append(role)

    record_event(
        s,
        actor=u,
        action="user.update",
        entity_type="User",
        entity_id=str(account.id),
        metadata={"before": before, "after": {"is_active": account.is_active, "roles": [r.key for r in account.roles]}},
    )
    s.commit()
    flash(f"Account updated for {account.email}.", "success")
    return redirect(url_for("admin.accounts_detail", user_id=user_id))


@bp.post("/accounts/<int:user_id>/reset-password")
@require_permission("admin.edit")
def accounts_reset_password(user_id: int):
    from werkzeug.security import generate_password_hash
    from app.biohost.audit import record_event

    s = db_session()
    u = _current_user()
    account = s.get(User, user_id)
    if not account:
        abort(404)

    errors = _password_errors(request.form.get("password") or "", request.form.get("password_confirm") or "")
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.accounts_detail", user_id=user_id))

    account.password_hash = generate_password_hash(request.form["password"])
    record_event(
        s,
        actor=u,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(account.id),
        metadata={"target_email": account.email, "reset_by": u.email},
    )
    s.commit()
    flash(f"Password reset for {account.email}.", "success")
    return redirect(url_for("admin.accounts_detail", user_id=user_id))


def _password_errors(password: str, password_confirm: str) -> list[str]:
    if not password:
        return ["Password is required."]
    if len(password) < 8:
        return ["Password must be at least 8 characters."]
    if password != password_confirm:
        return ["Passwords do not match."]
    return []
