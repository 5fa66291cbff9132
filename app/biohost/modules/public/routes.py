"""
Public serving surface: /<slug> on the default hosts and on verified custom domains.

Every route resolves the request host first. Unknown hosts are 404; allowed
hosts use the default namespace (domain_id NULL); a custom domain scopes
slugs to that domain.
"""
from __future__ import annotations

import logging
import re

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    jsonify,
    make_response,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)

from app.biohost.db import db_session
from app.biohost.modules.analytics.service import click_event_data, record_click
from app.biohost.modules.analytics.targeting import evaluate_targeting, visitor_context
from app.biohost.modules.biolinks.ics import event_window, render_ics
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.biolinks.service import check_biolink_password, password_hash_for
from app.biohost.modules.biolinks.vcard import render_vcard
from app.biohost.modules.domains.models import Domain
from app.biohost.modules.domains.service import resolve_request_domain
from app.biohost.modules.editor.blocks import LINK_BLOCK_TYPES
from app.biohost.modules.editor.renderer import render_layout, shown_to
from app.biohost.modules.editor.service import get_biolink_block
from app.biohost.modules.notifications.service import dispatch
from app.biohost.modules.pixels.service import render_body, render_head
from app.biohost.modules.pwa.service import generate_manifest, install_prompt_delay
from app.biohost.modules.submissions.service import (
    is_spam,
    store_submission,
    submission_type,
    success_message,
    validate_submission,
)
from app.biohost.modules.themes.service import background_css, css_string, effective_theme, font_import_url
from app.biohost.storage import StorageError, storage_from_config

logger = logging.getLogger(__name__)

bp = Blueprint("public", __name__)

IOS_RE = re.compile(r"iPhone|iPad|iPod", re.I)
ANDROID_RE = re.compile(r"Android", re.I)

CACHE_SHORT = "public, max-age=60"
CACHE_LONG = "public, max-age=86400"
CACHE_PRIVATE = "no-store, private"


# ---------- Lookup ----------
def _domain() -> Domain | None:
    allowed = tuple(current_app.config.get("BIOLINKS_ALLOWED_HOSTS") or ())
    known, domain = resolve_request_domain(db_session(), request.host or "", allowed)
    if not known:
        abort(404)
    return domain


def _find(slug: str, domain: Domain | None) -> BioLink | None:
    q = db_session().query(BioLink).filter(BioLink.url == (slug or "").lower())
    if domain is None:
        q = q.filter(BioLink.domain_id.is_(None))
    else:
        q = q.filter(BioLink.domain_id == domain.id)
    biolink = q.order_by(BioLink.id.asc()).first()
    if biolink is None or not biolink.is_active():
        return None
    return biolink


def _not_found(domain: Domain | None):
    if domain is not None and domain.custom_not_found_url:
        resp = redirect(domain.custom_not_found_url, code=302)
    else:
        resp = make_response(render_template("errors/404.html"), 404)
    resp.headers["Cache-Control"] = CACHE_SHORT
    return resp


def _resolve(slug: str) -> tuple[BioLink | None, Domain | None]:
    domain = _domain()
    return _find(slug, domain), domain


def _track(biolink: BioLink, block=None) -> None:
    """Record the click, commit, then fan out to notification handlers."""
    s = db_session()
    click = record_click(s, biolink, request, block=block)
    s.commit()
    dispatch(biolink, "block_click" if block is not None else "click", click_event_data(click, block))
    # handler success/failure counters
    s.commit()


def _access_key(biolink: BioLink) -> str:
    return f"biolink_access_{biolink.id}"


def _sensitive_key(biolink: BioLink) -> str:
    return f"biolink_sensitive_{biolink.id}"


def _needs_password(biolink: BioLink) -> bool:
    return bool(password_hash_for(biolink)) and not session.get(_access_key(biolink))


def _password_gate(biolink: BioLink, error: str | None = None, status: int = 200):
    resp = make_response(
        render_template(
            "public/password.html",
            biolink=biolink,
            hint=biolink.get_setting("password_hint"),
            error=error,
        ),
        status,
    )
    resp.headers["Cache-Control"] = CACHE_PRIVATE
    return resp


# ---------- Custom domain index ----------
@bp.get("/")
def domain_index():
    domain = _domain()
    if domain is None:
        return redirect(url_for("admin.index"))
    if domain.biolink_id:
        biolink = db_session().get(BioLink, domain.biolink_id)
        if biolink is not None and biolink.is_active():
            return _serve(biolink)
    if domain.custom_index_url:
        return redirect(domain.custom_index_url, code=302)
    return _not_found(domain)


# ---------- Pages ----------
@bp.get("/<slug>")
def biolink_page(slug: str):
    biolink, domain = _resolve(slug)
    if biolink is None:
        return _not_found(domain)
    return _serve(biolink)


def _serve(biolink: BioLink):
    if biolink.type == "link":
        return _serve_link(biolink)
    if biolink.type == "file":
        return _serve_file(biolink)

    _track(biolink)
    if biolink.type == "vcard":
        return render_template("public/vcard.html", biolink=biolink, card=biolink.get_setting("vcard", {}) or {})
    if biolink.type == "event":
        event = biolink.get_setting("event", {}) or {}
        start, end = event_window(event)
        return render_template("public/event.html", biolink=biolink, event=event, start=start, end=end)
    if biolink.type == "static":
        return render_template("public/static.html", biolink=biolink, page=biolink.get_setting("static", {}) or {})
    return _serve_biolink(biolink)


def _targeting_miss(biolink: BioLink):
    """Response for a visitor the link's targeting rules exclude, or None to carry on."""
    result = evaluate_targeting(biolink.get_setting("targeting"), visitor_context(request))
    if result.matches:
        return None
    logger.info("Targeting blocked biolink %s: %s", biolink.id, result.reason)
    if result.fallback_url:
        resp = redirect(result.fallback_url, code=302)
    else:
        resp = make_response(render_template("public/not_available.html", biolink=biolink, message=result.message), 403)
    resp.headers["Cache-Control"] = CACHE_PRIVATE
    return resp


def _serve_link(biolink: BioLink):
    blocked = _targeting_miss(biolink)
    if blocked is not None:
        return blocked
    if _needs_password(biolink):
        return _password_gate(biolink)
    if biolink.get_setting("sensitive.enabled") and not session.get(_sensitive_key(biolink)):
        return render_template(
            "public/sensitive.html",
            biolink=biolink,
            age_gate=bool(biolink.get_setting("sensitive.age_gate")),
        )

    _track(biolink)

    if biolink.get_setting("splash_page.enabled") and request.args.get("skip_splash") is None:
        return render_template("public/splash.html", biolink=biolink, splash=biolink.get_setting("splash_page", {}))

    if biolink.get_setting("deep_link.enabled"):
        deep = biolink.get_setting("deep_link", {}) or {}
        ua = request.headers.get("User-Agent") or ""
        app_url = None
        if IOS_RE.search(ua):
            app_url = deep.get("ios")
        elif ANDROID_RE.search(ua):
            app_url = deep.get("android")
        fallback = deep.get("fallback") or biolink.location_url
        if app_url:
            return render_template("public/deep_link.html", biolink=biolink, app_url=app_url, fallback=fallback)
        return redirect(fallback, code=302)

    if biolink.get_setting("cloaking.enabled"):
        resp = make_response(
            render_template(
                "public/cloak.html",
                biolink=biolink,
                title=biolink.get_setting("cloaking.title") or biolink.url,
            )
        )
        resp.headers["X-Frame-Options"] = "SAMEORIGIN"
        return resp

    code = biolink.get_setting("redirect_type", 302)
    code = 301 if code == 301 else 302
    resp = redirect(biolink.location_url, code=code)
    resp.headers["Cache-Control"] = CACHE_LONG if code == 301 else CACHE_SHORT
    return resp


def _serve_file(biolink: BioLink):
    if _needs_password(biolink):
        return _password_gate(biolink)
    key = biolink.get_setting("file_path")
    if not key:
        abort(404)
    try:
        fh = storage_from_config(current_app.config).open(key)
    except StorageError:
        logger.warning("File link %s points at missing object %s", biolink.id, key)
        abort(404)
    _track(biolink)
    return send_file(
        fh,
        mimetype=biolink.get_setting("mime_type") or "application/octet-stream",
        as_attachment=True,
        download_name=biolink.get_setting("file_name") or key.rsplit("/", 1)[-1],
        max_age=0,
    )


def _serve_biolink(biolink: BioLink):
    theme = effective_theme(biolink)
    pwa = biolink.pwa if biolink.pwa is not None and biolink.pwa.is_enabled else None
    return render_template(
        "public/biolink.html",
        biolink=biolink,
        regions=render_layout(biolink, visitor=visitor_context(request)),
        theme=theme,
        theme_css=css_string(theme),
        background=background_css(theme),
        font_url=font_import_url(theme),
        pixel_head=[render_head(p) for p in biolink.pixels],
        pixel_body=[render_body(p) for p in biolink.pixels],
        pwa=pwa,
        install_prompt_delay=install_prompt_delay(biolink) if pwa else None,
    )


# ---------- Gates ----------
@bp.post("/<slug>/password")
def biolink_password(slug: str):
    biolink, domain = _resolve(slug)
    if biolink is None:
        return _not_found(domain)
    if not check_biolink_password(biolink, request.form.get("password")):
        return _password_gate(biolink, error="Incorrect password.", status=401)
    session[_access_key(biolink)] = True
    return redirect(f"/{biolink.url}")


@bp.post("/<slug>/sensitive")
def biolink_sensitive(slug: str):
    biolink, domain = _resolve(slug)
    if biolink is None:
        return _not_found(domain)
    age_gate = bool(biolink.get_setting("sensitive.age_gate"))
    if age_gate and request.form.get("age_confirmed") is None:
        return render_template(
            "public/sensitive.html",
            biolink=biolink,
            age_gate=True,
            error="Please confirm you are 18 or older.",
        ), 400
    session[_sensitive_key(biolink)] = True
    return redirect(f"/{biolink.url}")


# ---------- Downloads ----------
@bp.get("/<slug>.vcf")
def biolink_vcard(slug: str):
    biolink, domain = _resolve(slug)
    if biolink is None or biolink.type != "vcard":
        return _not_found(domain)
    photo_bytes = None
    photo_path = biolink.get_setting("vcard.photo_path")
    if photo_path:
        try:
            with storage_from_config(current_app.config).open(photo_path) as fh:
                photo_bytes = fh.read()
        except StorageError:
            logger.warning("vCard photo missing for biolink %s: %s", biolink.id, photo_path)
    return Response(
        render_vcard(biolink, photo_bytes),
        mimetype="text/vcard",
        headers={"Content-Disposition": f'attachment; filename="{biolink.url}.vcf"'},
    )


@bp.get("/<slug>.ics")
def biolink_ics(slug: str):
    biolink, domain = _resolve(slug)
    if biolink is None or biolink.type != "event":
        return _not_found(domain)
    return Response(
        render_ics(biolink),
        mimetype="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{biolink.url}.ics"'},
    )


@bp.get("/<slug>/manifest.json")
def biolink_manifest(slug: str):
    biolink, domain = _resolve(slug)
    if biolink is None or biolink.pwa is None or not biolink.pwa.is_enabled:
        return _not_found(domain)
    resp = jsonify(generate_manifest(biolink, biolink.pwa))
    resp.mimetype = "application/manifest+json"
    return resp


@bp.get("/<slug>/b/<int:block_id>")
def block_click(slug: str, block_id: int):
    biolink, domain = _resolve(slug)
    if biolink is None:
        return _not_found(domain)
    block = get_biolink_block(biolink, block_id)
    if block is None or block.type not in LINK_BLOCK_TYPES or not block.location_url:
        return _not_found(domain)
    if not shown_to(block, visitor_context(request)):
        return _not_found(domain)
    _track(biolink, block=block)
    return redirect(block.location_url, code=302)


def _wants_json() -> bool:
    return request.is_json or request.accept_mimetypes.best == "application/json"


def _submit_reply(biolink: BioLink, block, ok: bool, message: str, status: int = 200):
    if _wants_json():
        body = {"ok": True, "message": message} if ok else {"ok": False, "error": message}
        return jsonify(body), status
    return redirect(f"/{biolink.url}?subscribed={1 if ok else 0}#block-{block.id}")


@bp.post("/<slug>/b/<int:block_id>/subscribe")
def block_subscribe(slug: str, block_id: int):
    """
    Collector form posts (email, phone, contact). Stored, then fanned out to
    the page's form_submit handlers. Form posts redirect back to the page;
    JSON callers get {"ok": ..., "message"/"error": ...}.
    """
    biolink, domain = _resolve(slug)
    if biolink is None:
        return _not_found(domain)
    block = get_biolink_block(biolink, block_id)
    kind = submission_type(block) if block is not None else None
    if kind is None or not shown_to(block, visitor_context(request)):
        if _wants_json():
            return jsonify({"ok": False, "error": "Form not found."}), 404
        return _not_found(domain)

    form = request.form
    if request.is_json:
        body = request.get_json(silent=True)
        form = body if isinstance(body, dict) else {}
    if is_spam(form):
        logger.info("Dropped honeypot submission for block %s", block.id)
        return _submit_reply(biolink, block, True, success_message(block, kind))

    data, errors = validate_submission(kind, form)
    if errors:
        return _submit_reply(biolink, block, False, errors[0], status=422)

    s = db_session()
    store_submission(s, biolink, block, kind, data, request, secret=current_app.config.get("SECRET_KEY") or "")
    s.commit()
    dispatch(biolink, "form_submit", {"block_id": block.id, "block_type": block.type, "submission": data})
    s.commit()
    return _submit_reply(biolink, block, True, success_message(block, kind))
