import csv
import io
import json
from datetime import datetime

import pytest
from flask import request
from werkzeug.datastructures import MultiDict
from werkzeug.security import generate_password_hash

from app.biohost import create_app
from app.biohost.db import session_scope
from app.biohost.models import AuditEvent, Base, Permission, Role, User
from app.biohost.modules.analytics.models import Click
from app.biohost.modules.analytics.targeting import (
    VisitorContext,
    block_visible,
    conditions_from_form,
    evaluate_targeting,
    parse_accept_language,
    schedule_allows,
    validate_rules,
    validate_schedule,
    visitor_context,
)
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.editor.models import Block
from app.biohost.modules.submissions.models import Submission
from app.biohost.modules.submissions.service import parse_filters, validate_submission

CSRF = "test-csrf-token"

PERMISSIONS = ("biolinks.view", "biolinks.create", "biolinks.edit", "biolinks.delete")

DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def _seed_all_permissions(s):
    r = Role(key="admin", name="Administrator")
    for key in PERMISSIONS:
        p = Permission(key=key, name=key)
        s.add(p)
        r.permissions.append(p)
    u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
    u.roles.append(r)
    s.add_all([r, u])


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        _seed_all_permissions(s)
    return app.test_client()


def _login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _post(client, url, data=None, **kwargs):
    data = dict(data or {})
    data["csrf_token"] = CSRF
    return client.post(url, data=data, **kwargs)


def _short_link(client, slug="promo"):
    _post(client, "/admin/biolinks/new", {"type": "link", "url": slug, "location_url": "https://example.com/landing"})
    with session_scope(client.application) as s:
        return s.query(BioLink).filter(BioLink.url == slug).one().id


def _edit_targeting(client, link_id, slug="promo", **fields):
    data = {
        "url": slug,
        "location_url": "https://example.com/landing",
        "is_enabled": "1",
        "redirect_type": "302",
        "targeting_form": "1",
    }
    data.update(fields)
    return _post(client, f"/admin/biolinks/{link_id}/edit", data, follow_redirects=True)


def _page(client, slug="fanpage"):
    _post(client, "/admin/biolinks/new", {"type": "biolink", "url": slug})
    with session_scope(client.application) as s:
        return s.query(BioLink).filter(BioLink.url == slug).one().id


def _add_block(client, page_id, block_type):
    _post(client, f"/admin/biolinks/{page_id}/blocks/new", {"type": block_type, "region": "content"})
    with session_scope(client.application) as s:
        return max(b.id for b in s.get(BioLink, page_id).blocks if b.type == block_type)


def _clicks(client, biolink_id):
    with session_scope(client.application) as s:
        return s.query(Click).filter(Click.biolink_id == biolink_id).count()


# ---------- Visitor context ----------
def test_accept_language_primary_codes():
    assert parse_accept_language("fr-CA,fr;q=0.9,en-GB;q=0.8,en;q=0.7,*;q=0.5") == ("fr", "en")
    assert parse_accept_language(None) == ()


def test_country_comes_from_first_cdn_header(client):
    app = client.application
    with app.test_request_context("/", headers={"CloudFront-Viewer-Country": "de", "User-Agent": IPHONE_UA}):
        ctx = visitor_context(request)
    assert ctx.country == "DE"
    assert (ctx.device, ctx.os, ctx.browser) == ("mobile", "iOS", "Safari")

    with app.test_request_context("/", headers={"CF-IPCountry": "XX", "X-Vercel-IP-Country": "FR"}):
        assert visitor_context(request).country is None


# ---------- Page targeting ----------
def test_targeting_rules():
    gb_desktop = VisitorContext(country="GB", device="desktop", browser="Chrome", os="Windows", languages=("en",))

    assert evaluate_targeting({}, gb_desktop).matches
    assert evaluate_targeting({"enabled": False, "countries": ["US"]}, gb_desktop).matches

    result = evaluate_targeting({"countries": ["GB"], "exclude_countries": ["GB"], "fallback_url": "https://x.test/"}, gb_desktop)
    assert (result.matches, result.reason, result.fallback_url) == (False, "country_excluded", "https://x.test/")
    assert result.message == "This content is not available in your region."

    assert evaluate_targeting({"countries": ["US"]}, gb_desktop).reason == "country_not_allowed"
    assert evaluate_targeting({"countries": ["US"]}, VisitorContext(device="desktop")).matches
    assert evaluate_targeting({"devices": ["mobile"]}, gb_desktop).reason == "device_not_allowed"
    assert evaluate_targeting({"browsers": ["Firefox"]}, gb_desktop).reason == "browser_not_allowed"
    assert evaluate_targeting({"browsers": ["Firefox"]}, VisitorContext(device="desktop")).matches
    assert evaluate_targeting({"operating_systems": ["macOS"]}, gb_desktop).reason == "os_not_allowed"
    assert evaluate_targeting({"languages": ["fr"]}, gb_desktop).reason == "language_not_allowed"
    assert evaluate_targeting({"languages": ["fr"]}, VisitorContext(device="desktop")).matches


def test_targeted_link_blocks_other_countries(client):
    _login(client)
    link_id = _short_link(client)
    _edit_targeting(client, link_id, targeting_enabled="1", targeting_countries="gb, ie")

    anon = client.application.test_client()
    r = anon.get("/promo", headers={"CF-IPCountry": "DE"})
    assert r.status_code == 403
    assert b"This content is not available in your region." in r.data
    assert "no-store" in r.headers["Cache-Control"]
    assert _clicks(client, link_id) == 0

    r = anon.get("/promo", headers={"CF-IPCountry": "GB"})
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.com/landing"
    assert _clicks(client, link_id) == 1


def test_targeting_fallback_redirects(client):
    _login(client)
    link_id = _short_link(client)
    _edit_targeting(
        client,
        link_id,
        targeting_enabled="1",
        targeting_devices="mobile",
        targeting_fallback_url="https://example.com/desktop",
    )

    anon = client.application.test_client()
    r = anon.get("/promo", headers={"User-Agent": DESKTOP_UA})
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.com/desktop"
    assert "no-store" in r.headers["Cache-Control"]

    r = anon.get("/promo", headers={"User-Agent": IPHONE_UA})
    assert r.headers["Location"] == "https://example.com/landing"


def test_unchecked_targeting_is_stored_but_ignored(client):
    _login(client)
    link_id = _short_link(client)
    _edit_targeting(client, link_id, targeting_countries="US")
    with session_scope(client.application) as s:
        rules = s.get(BioLink, link_id).get_setting("targeting")
    assert rules["enabled"] is False
    assert rules["countries"] == ["US"]

    r = client.application.test_client().get("/promo", headers={"CF-IPCountry": "DE"})
    assert r.status_code == 302


def test_targeting_form_validation(client):
    _login(client)
    link_id = _short_link(client)
    r = _edit_targeting(client, link_id, targeting_enabled="1", targeting_countries="GBR", targeting_fallback_url="nope")
    assert b"Countries must be two-letter codes (got GBR)." in r.data
    assert b"Targeting fallback must be a valid http(s) URL." in r.data
    with session_scope(client.application) as s:
        assert s.get(BioLink, link_id).get_setting("targeting") is None


# ---------- Block conditions ----------
def test_schedule_days_and_overnight_window():
    saturday_late = datetime(2026, 10, 17, 23, 30)
    assert schedule_allows({"days": [6]}, saturday_late)
    assert not schedule_allows({"days": [0, 1]}, saturday_late)
    assert schedule_allows({"time_start": "22:00", "time_end": "02:00"}, saturday_late)
    assert not schedule_allows({"time_start": "09:00", "time_end": "17:00"}, saturday_late)
    assert schedule_allows({"start_date": "2026-10-17", "end_date": "2026-10-17"}, saturday_late)
    assert not schedule_allows({"end_date": "2026-10-16"}, saturday_late)


def test_block_country_condition_hides_unknown_visitors():
    now = datetime(2026, 10, 17, 12, 0)
    assert block_visible({"countries": ["GB"]}, VisitorContext(country="GB"), now)
    assert not block_visible({"countries": ["GB"]}, VisitorContext(), now)
    assert block_visible({"countries": []}, VisitorContext(), now)


def test_conditions_form_parsing():
    form = MultiDict(
        [
            ("conditions_countries", "gb ie"),
            ("conditions_devices", "mobile"),
            ("conditions_devices", "toaster"),
            ("conditions_days", "1"),
            ("conditions_days", "9"),
            ("conditions_time_start", "25:00"),
        ]
    )
    conditions = conditions_from_form(form)
    assert conditions["countries"] == ["GB", "IE"]
    assert conditions["devices"] == ["mobile"]
    assert conditions["schedule"]["days"] == [1]
    assert validate_rules(conditions) == []
    assert validate_schedule(conditions["schedule"]) == ["Start time must be HH:MM."]


def test_block_conditions_filter_public_page(client):
    _login(client)
    page_id = _page(client)
    link = _add_block(client, page_id, "link")
    _post(
        client,
        f"/admin/biolinks/{page_id}/blocks/{link}/edit",
        {"location_url": "https://example.com/app", "conditions_form": "1", "conditions_devices": "mobile"},
    )
    with session_scope(client.application) as s:
        assert s.get(Block, link).settings["conditions"]["devices"] == ["mobile"]

    anon = client.application.test_client()
    r = anon.get("/fanpage", headers={"User-Agent": DESKTOP_UA})
    assert f"/fanpage/b/{link}".encode() not in r.data
    assert anon.get(f"/fanpage/b/{link}", headers={"User-Agent": DESKTOP_UA}).status_code == 404

    r = anon.get("/fanpage", headers={"User-Agent": IPHONE_UA})
    assert f"/fanpage/b/{link}".encode() in r.data
    r = anon.get(f"/fanpage/b/{link}", headers={"User-Agent": IPHONE_UA})
    assert r.headers["Location"] == "https://example.com/app"


# ---------- Submissions ----------
def test_submission_validation_messages():
    assert validate_submission("email", {})[1] == ["Email is required."]
    assert validate_submission("phone", {"name": "Sam"})[1] == ["Phone number is required."]
    data, errors = validate_submission("contact", {"email": "sam@example.com", "phone": "0123 456"})
    assert errors == ["Message is required."]
    data, errors = validate_submission("phone", {"phone": "+44 20 7946 0000", "email": "ignored@example.com"})
    assert (data, errors) == ({"phone": "+44 20 7946 0000"}, [])


def test_contact_form_stores_submission(client):
    _login(client)
    page_id = _page(client)
    block_id = _add_block(client, page_id, "contact_collector")
    anon = client.application.test_client()

    r = anon.post(f"/fanpage/b/{block_id}/subscribe", json={"email": "sam@example.com"})
    assert r.status_code == 422
    assert r.get_json() == {"ok": False, "error": "Message is required."}

    r = anon.post(
        f"/fanpage/b/{block_id}/subscribe",
        json={"name": "Sam", "email": "sam@example.com", "message": "Hello"},
        headers={"CF-IPCountry": "GB", "X-Forwarded-For": "203.0.113.9"},
    )
    assert r.status_code == 200
    assert r.get_json() == {"ok": True, "message": "Thanks for your message."}

    with session_scope(client.application) as s:
        sub = s.query(Submission).one()
        assert sub.type == "contact"
        assert sub.data == {"name": "Sam", "email": "sam@example.com", "message": "Hello"}
        assert sub.country_code == "GB"
        assert sub.ip_hash and "203.0.113.9" not in sub.ip_hash


def test_custom_success_message_and_form_redirect(client):
    _login(client)
    page_id = _page(client)
    block_id = _add_block(client, page_id, "phone_collector")
    _post(client, f"/admin/biolinks/{page_id}/blocks/{block_id}/edit", {"setting_success_message": "We'll ring you."})

    anon = client.application.test_client()
    r = anon.post(f"/fanpage/b/{block_id}/subscribe", json={"phone": "07700 900123"})
    assert r.get_json() == {"ok": True, "message": "We'll ring you."}

    r = anon.post(f"/fanpage/b/{block_id}/subscribe", data={"phone": "07700 900124"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/fanpage?subscribed=1#block-{block_id}")
    assert b"We&#39;ll ring you." in anon.get("/fanpage?subscribed=1").data


def test_honeypot_pretends_success(client):
    _login(client)
    page_id = _page(client)
    block_id = _add_block(client, page_id, "email_collector")

    r = client.application.test_client().post(
        f"/fanpage/b/{block_id}/subscribe",
        json={"email": "bot@example.com", "website": "http://spam.test"},
    )
    assert r.get_json() == {"ok": True, "message": "Thanks for subscribing."}
    with session_scope(client.application) as s:
        assert s.query(Submission).count() == 0


def test_hidden_or_non_collector_block_is_not_a_form(client):
    _login(client)
    page_id = _page(client)
    block_id = _add_block(client, page_id, "email_collector")
    heading = _add_block(client, page_id, "heading")
    _post(client, f"/admin/biolinks/{page_id}/blocks/{block_id}/toggle")

    anon = client.application.test_client()
    r = anon.post(f"/fanpage/b/{block_id}/subscribe", json={"email": "fan@example.com"})
    assert r.status_code == 404
    assert r.get_json() == {"ok": False, "error": "Form not found."}
    assert anon.post(f"/fanpage/b/{heading}/subscribe", data={"email": "fan@example.com"}).status_code == 404


def test_submissions_manager_counts_filters_and_export(client):
    _login(client)
    page_id = _page(client)
    email_block = _add_block(client, page_id, "email_collector")
    phone_block = _add_block(client, page_id, "phone_collector")
    anon = client.application.test_client()
    anon.post(f"/fanpage/b/{email_block}/subscribe", data={"email": "a@example.com"})
    anon.post(f"/fanpage/b/{email_block}/subscribe", data={"email": "b@example.com"})
    anon.post(f"/fanpage/b/{phone_block}/subscribe", data={"phone": "07700 900123"})

    r = client.get(f"/admin/biolinks/{page_id}/submissions")
    assert r.status_code == 200
    assert b"Email: 2" in r.data
    assert b"Phone: 1" in r.data
    assert b"Contact: 0" in r.data

    r = client.get(f"/admin/biolinks/{page_id}/submissions?type=phone")
    assert b"07700 900123" in r.data
    assert b"a@example.com" not in r.data

    r = client.get(f"/admin/biolinks/{page_id}/submissions/export?type=email")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    rows = list(csv.reader(io.StringIO(r.data.decode("utf-8"))))
    assert rows[0] == ["Submitted", "Type", "Block", "Name", "Email", "Phone", "Message", "Country"]
    assert sorted(row[4] for row in rows[1:]) == ["a@example.com", "b@example.com"]

    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "submission.export").one()
        assert json.loads(ev.metadata_json)["row_count"] == 2


def test_delete_submission_and_cascade_with_page(client):
    _login(client)
    page_id = _page(client)
    block_id = _add_block(client, page_id, "email_collector")
    anon = client.application.test_client()
    anon.post(f"/fanpage/b/{block_id}/subscribe", data={"email": "a@example.com"})
    anon.post(f"/fanpage/b/{block_id}/subscribe", data={"email": "b@example.com"})
    with session_scope(client.application) as s:
        first = s.query(Submission).order_by(Submission.id).first().id

    r = _post(client, f"/admin/biolinks/{page_id}/submissions/{first}/delete", follow_redirects=True)
    assert b"Submission deleted." in r.data
    with session_scope(client.application) as s:
        assert s.query(Submission).count() == 1

    _post(client, f"/admin/biolinks/{page_id}/delete")
    with session_scope(client.application) as s:
        assert s.query(Submission).count() == 0


def test_parse_filters_drops_bad_values():
    assert parse_filters({"type": "fax", "block_id": "x", "date_from": "2026-13-40"}) == {}
    assert parse_filters({"type": "email", "block_id": "4", "date_to": "2026-10-17"}) == {
        "type": "email",
        "block_id": 4,
        "date_to": "2026-10-17",
    }
