import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy import inspect as sa_inspect

from app.biohost.admin import bp as admin_bp
from app.biohost.auth import bp as auth_bp, load_current_user
from app.biohost.config import load_config
from app.biohost.db import init_db, teardown_db_session
from app.biohost.entitlements import EntitlementDenied
from app.biohost.modules.analytics.admin import bp as analytics_bp
from app.biohost.modules.biolinks.admin import bp as biolinks_bp
from app.biohost.modules.domains.admin import bp as domains_bp
from app.biohost.modules.editor.admin import bp as editor_bp
from app.biohost.modules.notifications.admin import bp as notifications_bp
from app.biohost.modules.page_templates.admin import bp as page_templates_bp
from app.biohost.modules.pixels.admin import bp as pixels_bp
from app.biohost.modules.projects.admin import bp as projects_bp
from app.biohost.modules.public.routes import bp as public_bp
from app.biohost.modules.pwa.admin import bp as pwa_bp
from app.biohost.modules.qr_codes.admin import bp as qr_codes_bp
from app.biohost.modules.submissions.admin import bp as submissions_bp
from app.biohost.modules.themes.admin import bp as themes_bp
from app.biohost.routes import bp as routes_bp

# Tables the running code expects; a missing one means migrations were not applied.
EXPECTED_TABLES = (
    "users",
    "roles",
    "permissions",
    "user_entitlements",
    "audit_events",
    "biolinks",
    "biolink_projects",
    "biolink_domains",
    "biolink_themes",
    "theme_favourites",
    "biolink_blocks",
    "biolink_pixels",
    "biolink_pixel",
    "biolink_clicks",
    "biolink_notification_handlers",
    "biolink_templates",
    "biolink_pwas",
)

_UNTRACKED_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.biohost.security import ensure_csrf_token, is_csrf_exempt, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.biohost.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # login/logout and the public gates (password, sensitive) carry no admin session
            if is_csrf_exempt(request):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.biohost.storage import S3Storage, storage_from_config

            try:
                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(biolinks_bp, url_prefix="/admin")
    app.register_blueprint(editor_bp, url_prefix="/admin")
    app.register_blueprint(projects_bp, url_prefix="/admin")
    app.register_blueprint(domains_bp, url_prefix="/admin")
    app.register_blueprint(notifications_bp, url_prefix="/admin")
    app.register_blueprint(pixels_bp, url_prefix="/admin")
    app.register_blueprint(themes_bp, url_prefix="/admin")
    app.register_blueprint(page_templates_bp, url_prefix="/admin")
    app.register_blueprint(analytics_bp, url_prefix="/admin")
    app.register_blueprint(qr_codes_bp, url_prefix="/admin")
    app.register_blueprint(pwa_bp, url_prefix="/admin")
    app.register_blueprint(submissions_bp, url_prefix="/admin")
    # last: /<slug> must not shadow anything above
    app.register_blueprint(public_bp)

    def _load_user_wrapper():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine is None:
                raise RuntimeError("sqlalchemy_engine not initialized")
            insp = sa_inspect(engine)
            missing = [f"{t} (table)" for t in EXPECTED_TABLES if not insp.has_table(t)]
            if insp.has_table("biolinks"):
                cols = {c["name"] for c in insp.get_columns("biolinks")}
                for col in ("theme_id", "unique_clicks", "last_click_at"):
                    if col not in cols:
                        missing.append(f"biolinks.{col}")
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing
        if missing and not app.config.get("_schema_health_logged"):
            app.config["_schema_health_logged"] = True
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith("/admin") and getattr(g, "current_user", None):
            # migrations may have run since startup
            _run_schema_health_check()
            if app.config.get("_schema_health_ok"):
                return None
            return render_template("errors/schema_out_of_date.html", missing=app.config.get("_schema_health_missing") or []), 500
        return None

    @app.errorhandler(EntitlementDenied)
    def _err_entitlement(e):  # type: ignore[no-redef]
        flash(str(e), "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        flash("File too large. Maximum size is 50MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
