import io
import json
from datetime import datetime, timedelta

import pytest
from PIL import Image
from werkzeug.security import generate_password_hash

from app.biohost import create_app, entitlements
from app.biohost.db import session_scope
from app.biohost.models import Base, Permission, Role, User
from app.biohost.modules.analytics.models import Click
from app.biohost.modules.analytics.service import by_block, by_country, by_device, by_referrer, prune_clicks, resolve_window, summary
from app.biohost.modules.analytics.useragent import parse_user_agent
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.editor.models import Block
from app.biohost.modules.qr_codes.service import DEFAULT_SETTINGS as QR_DEFAULTS

CSRF = "test-csrf-token"

PERMISSIONS = (
    "biolinks.view",
    "biolinks.create",
    "biolinks.edit",
    "analytics.view",
    "qr.manage",
    "pwa.manage",
)

IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"


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


def _grant(client, code, limit=None):
    with session_scope(client.application) as s:
        u = s.query(User).one()
        entitlements.set_entitlement(s, u, code, enabled=True, limit=limit)


def _link(client, slug="promo", type_="link"):
    data = {"type": type_, "url": slug}
    if type_ == "link":
        data["location_url"] = "https://example.com/landing"
    _post(client, "/admin/biolinks/new", data)
    with session_scope(client.application) as s:
        return s.query(BioLink).filter(BioLink.url == slug).one().id


def _qr_settings(client, biolink_id):
    with session_scope(client.application) as s:
        return dict((s.get(BioLink, biolink_id).settings or {}).get("qr_code") or {})


# ---------- Analytics ----------
def test_clicks_recorded_with_unique_visitors(client):
    _login(client)
    link_id = _link(client)
    anon = client.application.test_client()

    anon.get(
        "/promo?utm_source=newsletter&utm_campaign=spring",
        headers={"CF-IPCountry": "gb", "Referer": "https://news.example.org/story"},
    )
    anon.get("/promo")
    anon.get("/promo", headers={"User-Agent": IPHONE})

    with session_scope(client.application) as s:
        biolink = s.get(BioLink, link_id)
        assert biolink.clicks == 3
        assert biolink.unique_clicks == 2
        assert biolink.last_click_at is not None

        clicks = s.query(Click).filter(Click.biolink_id == link_id).order_by(Click.id.asc()).all()
        assert [c.is_unique for c in clicks] == [True, False, True]
        first = clicks[0]
        assert first.country_code == "GB"
        assert first.referrer_host == "news.example.org"
        assert first.utm_source == "newsletter"
        assert first.utm_campaign == "spring"
        assert clicks[1].referrer_host is None
        assert clicks[2].device_type == "mobile"
        assert clicks[2].os_name == "iOS"
        assert clicks[2].browser_name == "Safari"


def test_chart_json_and_retention_window(client):
    _login(client)
    link_id = _link(client)
    anon = client.application.test_client()
    anon.get("/promo")
    anon.get("/promo", headers={"User-Agent": IPHONE})

    r = client.get(f"/admin/biolinks/{link_id}/analytics/chart.json?period=7d")
    assert r.status_code == 200
    data = r.json
    assert data["period"] == "7d"
    assert data["label"] == "Last 7 days"
    assert data["limited"] is False
    assert len(data["labels"]) == 7
    assert data["data"][-1] == 2
    assert sum(data["data"]) == 2

    # the default plan keeps 30 days of clicks
    data = client.get(f"/admin/biolinks/{link_id}/analytics/chart.json?period=90d").json
    assert data["limited"] is True
    assert len(data["labels"]) == 31

    data = client.get(f"/admin/biolinks/{link_id}/analytics/chart.json?period=forever").json
    assert data["period"] == "7d"

    assert client.get("/admin/biolinks/4242/analytics/chart.json").status_code == 404


def test_analytics_pages_render(client):
    _login(client)
    link_id = _link(client)
    client.application.test_client().get("/promo", headers={"CF-IPCountry": "FR"})

    r = client.get("/admin/analytics?period=30d")
    assert r.status_code == 200
    assert b"/promo" in r.data

    r = client.get(f"/admin/biolinks/{link_id}/analytics")
    assert r.status_code == 200
    assert b"France" in r.data

    assert client.get("/admin/biolinks/4242/analytics").status_code == 404


def test_breakdowns_match_page_view_total(client):
    _login(client)
    page_id = _link(client, "fanpage", type_="biolink")
    now = datetime(2030, 6, 1, 12, 0)
    with session_scope(client.application) as s:
        block = Block(biolink_id=page_id, type="link", region="content", order=1, location_url="https://example.com/")
        s.add(block)
        s.flush()
        s.add(Click(biolink_id=page_id, country_code="FR", device_type="desktop", referrer_host="t.co", is_unique=True, created_at=now))
        for _ in range(2):
            s.add(Click(biolink_id=page_id, block_id=block.id, country_code="FR", device_type="mobile", is_unique=False, created_at=now))
        block_id = block.id

    start, end = now - timedelta(days=1), now + timedelta(days=1)
    with session_scope(client.application) as s:
        assert summary(s, [page_id], start, end) == {"clicks": 1, "unique_clicks": 1}
        assert by_country(s, [page_id], start, end) == [{"code": "FR", "name": "France", "clicks": 1}]
        assert by_device(s, [page_id], start, end) == [{"device": "desktop", "clicks": 1}]
        assert by_referrer(s, [page_id], start, end) == [{"referrer": "t.co", "clicks": 1}]
        assert [(b["block_id"], b["clicks"]) for b in by_block(s, [page_id], start, end)] == [(block_id, 2)]


def test_unlimited_retention_is_not_clamped(client):
    _grant(client, "bio.analytics_days", limit=None)
    with client.application.app_context():
        with session_scope(client.application) as s:
            u = s.query(User).one()
            window = resolve_window(u, "1y", now=datetime(2030, 6, 1, 12, 0))
    assert window["limited"] is False
    assert window["retention_days"] is None
    assert window["start"] == datetime(2029, 6, 2)


def test_prune_clicks_keeps_counters(client):
    _login(client)
    link_id = _link(client)
    now = datetime(2030, 6, 1, 12, 0)
    with session_scope(client.application) as s:
        biolink = s.get(BioLink, link_id)
        biolink.clicks = 3
        for age in (45, 31, 2):
            s.add(Click(biolink_id=link_id, device_type="desktop", is_unique=True, created_at=now - timedelta(days=age)))

    with session_scope(client.application) as s:
        u = s.query(User).one()
        assert prune_clicks(s, u, None, now=now) == 0
        assert prune_clicks(s, u, 30, now=now) == 2

    with session_scope(client.application) as s:
        assert s.query(Click).count() == 1
        assert s.get(BioLink, link_id).clicks == 3


def test_prune_script_dry_run_then_apply(client, monkeypatch, capsys):
    from scripts import prune_clicks as prune_script

    _login(client)
    link_id = _link(client)
    with session_scope(client.application) as s:
        old = datetime.utcnow() - timedelta(days=45)
        s.add(Click(biolink_id=link_id, device_type="desktop", is_unique=True, created_at=old))
        s.add(Click(biolink_id=link_id, device_type="desktop", is_unique=True, created_at=datetime.utcnow()))

    monkeypatch.setattr("sys.argv", ["prune_clicks.py"])
    prune_script.main()
    assert "Would delete 1 click(s)." in capsys.readouterr().out
    with session_scope(client.application) as s:
        assert s.query(Click).count() == 2

    monkeypatch.setattr("sys.argv", ["prune_clicks.py", "--apply"])
    prune_script.main()
    out = capsys.readouterr().out
    assert "admin@example.com: 1 click(s) older than 30 days" in out
    assert "Deleted 1 click(s)." in out
    with session_scope(client.application) as s:
        assert s.query(Click).count() == 1




@pytest.mark.parametrize(
    "ua, expected",
    [
        (IPHONE, ("mobile", "iOS", "Safari", False)),
        (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36 Edg/120.0",
            ("desktop", "Windows", "Edge", False),
        ),
        (
            "Mozilla/5.0 (Linux; Android 14; SM-X700) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36",
            ("tablet", "Android", "Chrome", False),
        ),
        ("Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)", ("other", None, None, True)),
        ("", ("other", None, None, False)),
    ],
)
def test_parse_user_agent(ua, expected):
    info = parse_user_agent(ua)
    assert (info.device_type, info.os_name, info.browser_name, info.is_bot) == expected


# ---------- QR codes ----------
def _qr_form(**overrides):
    data = {
        "colour_preset": "",
        "foreground_colour": "#112233",
        "background_colour": "#FFFFFF",
        "size": "300",
        "error_correction": "h",
        "module_style": "rounded",
        "logo_size": "20",
    }
    data.update(overrides)
    return data


def test_qr_page_and_preview(client):
    _login(client)
    link_id = _link(client)

    r = client.get(f"/admin/biolinks/{link_id}/qr")
    assert r.status_code == 200
    assert b"data:image/png;base64," in r.data

    headers = {"X-CSRF-Token": CSRF, "Accept": "application/json"}
    r = client.post(f"/admin/biolinks/{link_id}/qr/preview", data=_qr_form(colour_preset="forest"), headers=headers)
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["data_uri"].startswith("data:image/png;base64,")

    r = client.post(
        f"/admin/biolinks/{link_id}/qr/preview",
        data=_qr_form(foreground_colour="blue", size="50", module_style="hearts"),
        headers=headers,
    )
    assert r.status_code == 400
    errors = r.json["errors"]
    assert "Foreground colour must be a hex colour like #000000." in errors
    assert "Size must be between 100 and 1000 pixels." in errors
    assert "Module style must be square, rounded or dots." in errors

    # previews are never saved
    assert _qr_settings(client, link_id) == {}


def test_qr_save_swap_reset(client):
    _login(client)
    link_id = _link(client)

    r = _post(client, f"/admin/biolinks/{link_id}/qr", _qr_form(), follow_redirects=True)
    assert b"QR code settings saved." in r.data
    qr = _qr_settings(client, link_id)
    assert qr["foreground_colour"] == "#112233"
    assert qr["background_colour"] == "#ffffff"
    assert qr["size"] == 300
    assert qr["error_correction"] == "H"
    assert qr["module_style"] == "rounded"

    r = _post(client, f"/admin/biolinks/{link_id}/qr", _qr_form(size="5000"), follow_redirects=True)
    assert b"Size must be between 100 and 1000 pixels." in r.data
    assert _qr_settings(client, link_id)["size"] == 300

    _post(client, f"/admin/biolinks/{link_id}/qr/swap")
    qr = _qr_settings(client, link_id)
    assert (qr["foreground_colour"], qr["background_colour"]) == ("#ffffff", "#112233")

    r = _post(client, f"/admin/biolinks/{link_id}/qr/reset", follow_redirects=True)
    assert b"QR code reset to defaults." in r.data
    assert _qr_settings(client, link_id) == QR_DEFAULTS


def test_qr_downloads(client):
    _login(client)
    link_id = _link(client)
    _post(client, f"/admin/biolinks/{link_id}/qr", _qr_form(colour_preset="ocean", size="200"))

    r = client.get(f"/admin/biolinks/{link_id}/qr/download/png")
    assert r.status_code == 200
    assert r.mimetype == "image/png"
    assert 'filename="qr-promo.png"' in r.headers["Content-Disposition"]
    assert Image.open(io.BytesIO(r.data)).size == (200, 200)

    r = client.get(f"/admin/biolinks/{link_id}/qr/download/svg")
    assert r.status_code == 200
    assert r.mimetype == "image/svg+xml"
    assert b"#1e40af" in r.data
    assert b'<rect width="100%" height="100%" fill="#eff6ff"/>' in r.data

    assert client.get(f"/admin/biolinks/{link_id}/qr/download/gif").status_code == 404
    assert client.get("/admin/biolinks/4242/qr/download/png").status_code == 404


def _png_bytes(colour=(255, 0, 0)):
    buf = io.BytesIO()
    Image.new("RGB", (64, 64), colour).save(buf, format="PNG")
    return buf.getvalue()


def test_qr_logo_upload_and_remove(client):
    _login(client)
    link_id = _link(client)

    r = _post(
        client,
        f"/admin/biolinks/{link_id}/qr/logo",
        {"logo": (io.BytesIO(b"plain text"), "logo.txt")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Logo must be an image (png, jpg, gif or webp)." in r.data

    r = _post(
        client,
        f"/admin/biolinks/{link_id}/qr/logo",
        {"logo": (io.BytesIO(b"not really a png"), "logo.png")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Logo is not a readable image." in r.data
    assert _qr_settings(client, link_id).get("logo_path") is None

    r = _post(
        client,
        f"/admin/biolinks/{link_id}/qr/logo",
        {"logo": (io.BytesIO(_png_bytes()), "logo.png")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Logo uploaded." in r.data
    assert _qr_settings(client, link_id)["logo_path"]

    r = client.get(f"/admin/biolinks/{link_id}/qr/download/png")
    img = Image.open(io.BytesIO(r.data)).convert("RGB")
    assert img.getpixel((img.size[0] // 2, img.size[1] // 2)) == (255, 0, 0)

    r = _post(client, f"/admin/biolinks/{link_id}/qr/logo/remove", follow_redirects=True)
    assert b"Logo removed." in r.data
    assert _qr_settings(client, link_id)["logo_path"] is None


# ---------- PWA ----------
def _pwa_form(**overrides):
    data = {
        "name": "Jane App",
        "short_name": "",
        "theme_color": "#112233",
        "background_color": "#ffffff",
        "display": "standalone",
        "icon_url": "https://cdn.example.com/icon.png",
        "screenshots": "https://cdn.example.com/a.png\nhttps://cdn.example.com/b.png\n",
        "shortcut_1_name": "Shop",
        "shortcut_1_url": "/shop",
        "install_prompt_delay": "10",
        "is_enabled": "1",
    }
    data.update(overrides)
    return data


def test_pwa_needs_entitlement(client):
    _login(client)
    page_id = _link(client, "jane-app", "biolink")
    assert client.get(f"/admin/biolinks/{page_id}/pwa").status_code == 200

    r = _post(client, f"/admin/biolinks/{page_id}/pwa", _pwa_form(), follow_redirects=True)
    assert b"Your plan does not include progressive web app." in r.data
    with session_scope(client.application) as s:
        assert s.get(BioLink, page_id).pwa is None

    # short links cannot carry a PWA
    link_id = _link(client)
    assert client.get(f"/admin/biolinks/{link_id}/pwa").status_code == 404


def test_pwa_save_and_manifest(client):
    _login(client)
    _grant(client, "bio.pwa")
    page_id = _link(client, "jane-app", "biolink")

    r = _post(client, f"/admin/biolinks/{page_id}/pwa", _pwa_form(), follow_redirects=True)
    assert b"PWA settings saved." in r.data

    anon = client.application.test_client()
    r = anon.get("/jane-app/manifest.json")
    assert r.status_code == 200
    assert r.mimetype == "application/manifest+json"
    manifest = json.loads(r.data)
    assert manifest["name"] == "Jane App"
    assert manifest["short_name"] == "Jane App"
    assert manifest["start_url"] == "/jane-app"
    assert manifest["scope"] == "/jane-app"
    assert manifest["theme_color"] == "#112233"
    assert manifest["lang"] == "en-GB"
    assert [i["sizes"] for i in manifest["icons"]] == ["192x192", "512x512"]
    assert [s["src"] for s in manifest["screenshots"]] == [
        "https://cdn.example.com/a.png",
        "https://cdn.example.com/b.png",
    ]
    assert manifest["shortcuts"] == [{"name": "Shop", "url": "/shop", "description": ""}]

    r = anon.get("/jane-app")
    assert b'rel="manifest"' in r.data
    assert b"10000" in r.data


def test_pwa_validation(client):
    _login(client)
    _grant(client, "bio.pwa")
    page_id = _link(client, "jane-app", "biolink")

    r = _post(
        client,
        f"/admin/biolinks/{page_id}/pwa",
        _pwa_form(
            name="",
            theme_color="navy",
            install_prompt_delay="500",
            shortcut_1_url="",
            screenshots="ftp://cdn.example.com/a.png",
        ),
        follow_redirects=True,
    )
    assert b"App name is required." in r.data
    assert b"Theme colour must be a hex colour like #6366f1." in r.data
    assert b"Install prompt delay must be between 0 and 300 seconds." in r.data
    assert b"Shortcut 1 needs a name and a URL." in r.data
    assert b"Screenshots must be http(s) URLs." in r.data
    with session_scope(client.application) as s:
        assert s.get(BioLink, page_id).pwa is None


def test_pwa_enable_disable_delete(client):
    _login(client)
    _grant(client, "bio.pwa")
    page_id = _link(client, "jane-app", "biolink")
    anon = client.application.test_client()

    assert _post(client, f"/admin/biolinks/{page_id}/pwa/disable").status_code == 404

    _post(client, f"/admin/biolinks/{page_id}/pwa", _pwa_form())
    assert anon.get("/jane-app/manifest.json").status_code == 200

    r = _post(client, f"/admin/biolinks/{page_id}/pwa/disable", follow_redirects=True)
    assert b"PWA disabled" in r.data
    assert anon.get("/jane-app/manifest.json").status_code == 404

    _post(client, f"/admin/biolinks/{page_id}/pwa/enable")
    assert anon.get("/jane-app/manifest.json").status_code == 200

    r = _post(client, f"/admin/biolinks/{page_id}/pwa/delete", follow_redirects=True)
    assert b"PWA configuration deleted." in r.data
    assert anon.get("/jane-app/manifest.json").status_code == 404
    with session_scope(client.application) as s:
        biolink = s.get(BioLink, page_id)
        assert biolink.pwa is None
        assert "pwa" not in (biolink.settings or {})
