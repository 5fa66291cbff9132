from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.biohost import create_app, entitlements
from app.biohost.db import session_scope
from app.biohost.models import Base, Permission, Role, User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.page_templates.models import Template
from app.biohost.modules.page_templates.presets import SYSTEM_TEMPLATES
from app.biohost.modules.page_templates.service import preview, replace_placeholders
from app.biohost.modules.pixels.models import Pixel
from app.biohost.modules.pixels.service import render_body, render_head
from app.biohost.modules.themes.models import Theme
from app.biohost.modules.themes.presets import SYSTEM_THEMES
from app.biohost.modules.themes.service import css_string

CSRF = "test-csrf-token"

PERMISSIONS = (
    "biolinks.view",
    "biolinks.create",
    "biolinks.edit",
    "pixels.manage",
    "themes.manage",
    "templates.manage",
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


def _seed_gallery(s):
    now = datetime.utcnow()
    for i, (slug, name, category, premium, settings) in enumerate(SYSTEM_THEMES):
        s.add(
            Theme(
                user_id=None,
                slug=slug,
                name=name,
                category=category,
                settings=settings,
                is_system=True,
                is_premium=premium,
                is_gallery=True,
                is_active=True,
                sort_order=i,
                created_at=now,
                updated_at=now,
            )
        )
    for i, t in enumerate(SYSTEM_TEMPLATES):
        s.add(
            Template(
                user_id=None,
                slug=t["slug"],
                name=t["name"],
                category=t["category"],
                description=t.get("description"),
                blocks_json=t["blocks"],
                settings_json=t.get("settings") or {},
                placeholders=t.get("placeholders") or {},
                tags=t.get("tags") or [],
                is_system=True,
                is_premium=bool(t.get("premium")),
                is_active=True,
                sort_order=i,
                usage_count=0,
                created_at=now,
                updated_at=now,
            )
        )


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
        _seed_gallery(s)
    return app.test_client()


def _login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _post(client, url, data=None, **kwargs):
    data = dict(data or {})
    data["csrf_token"] = CSRF
    return client.post(url, data=data, **kwargs)


def _grant(client, code):
    with session_scope(client.application) as s:
        u = s.query(User).one()
        entitlements.set_entitlement(s, u, code, enabled=True, limit=None)


def _page(client, slug="themed"):
    _post(client, "/admin/biolinks/new", {"type": "biolink", "url": slug})
    with session_scope(client.application) as s:
        return s.query(BioLink).filter(BioLink.url == slug).one().id


def _theme_id(client, slug):
    with session_scope(client.application) as s:
        return s.query(Theme).filter(Theme.slug == slug).one().id


def _template_id(client, slug):
    with session_scope(client.application) as s:
        return s.query(Template).filter(Template.slug == slug).one().id


def _pixels(client):
    with session_scope(client.application) as s:
        return [(p.type, p.name, p.pixel_id) for p in s.query(Pixel).order_by(Pixel.id.asc()).all()]


# ---------- Pixels ----------
def test_create_pixel_and_validation(client):
    _login(client)
    r = _post(
        client,
        "/admin/pixels/new",
        {"type": "facebook", "name": "FB main", "pixel_id": "1234567890"},
        follow_redirects=True,
    )
    assert b"Pixel &#39;FB main&#39; created." in r.data or b"Pixel 'FB main' created." in r.data
    assert b"FB main" in r.data

    r = _post(client, "/admin/pixels/new", {"type": "myspace", "name": "", "pixel_id": ""}, follow_redirects=True)
    assert b"Invalid type. Must be one of:" in r.data
    assert b"Name is required." in r.data
    assert b"Pixel ID is required." in r.data

    assert _pixels(client) == [("facebook", "FB main", "1234567890")]


def test_pixel_limit(client):
    _login(client)
    for i in range(5):
        _post(client, "/admin/pixels/new", {"type": "tiktok", "name": f"TT {i}", "pixel_id": f"C{i}"})
    r = _post(client, "/admin/pixels/new", {"type": "tiktok", "name": "TT 6", "pixel_id": "C6"}, follow_redirects=True)
    assert b"limit" in r.data
    assert len(_pixels(client)) == 5


def test_attach_pixels_renders_on_public_page(client):
    _login(client)
    page_id = _page(client, "tracked-page")
    _post(client, "/admin/pixels/new", {"type": "facebook", "name": "FB", "pixel_id": "1234567890"})
    _post(client, "/admin/pixels/new", {"type": "google_tag_manager", "name": "GTM", "pixel_id": "GTM-ABC123"})
    with session_scope(client.application) as s:
        ids = [str(p.id) for p in s.query(Pixel).all()]

    r = _post(
        client,
        f"/admin/biolinks/{page_id}/pixels",
        {"pixel_ids": ids + ["999"]},
        follow_redirects=True,
    )
    assert b"2 pixel(s) attached." in r.data

    anon = client.application.test_client()
    r = anon.get("/tracked-page")
    assert r.status_code == 200
    assert b"fbq('init', '1234567890');" in r.data
    assert b"googletagmanager.com/gtm.js" in r.data or b"GTM-ABC123" in r.data
    assert b"googletagmanager.com/ns.html?id=GTM-ABC123" in r.data

    # detaching everything
    r = _post(client, f"/admin/biolinks/{page_id}/pixels", {}, follow_redirects=True)
    assert b"0 pixel(s) attached." in r.data
    assert b"fbq(" not in anon.get("/tracked-page").data


def test_edit_and_delete_pixel_detaches(client):
    _login(client)
    page_id = _page(client, "tracked-page")
    _post(client, "/admin/pixels/new", {"type": "facebook", "name": "FB", "pixel_id": "111"})
    with session_scope(client.application) as s:
        pixel_id = s.query(Pixel).one().id
    _post(client, f"/admin/biolinks/{page_id}/pixels", {"pixel_ids": [str(pixel_id)]})

    r = _post(
        client,
        f"/admin/pixels/{pixel_id}/edit",
        {"type": "facebook", "name": "FB renamed", "pixel_id": "222"},
        follow_redirects=True,
    )
    assert b"Pixel updated." in r.data
    assert _pixels(client) == [("facebook", "FB renamed", "222")]

    r = _post(client, f"/admin/pixels/{pixel_id}/delete", follow_redirects=True)
    assert b"deleted." in r.data
    assert _pixels(client) == []
    with session_scope(client.application) as s:
        assert s.get(BioLink, page_id).pixels == []

    assert _post(client, f"/admin/pixels/{pixel_id}/delete").status_code == 404


def test_render_head_escapes_pixel_id():
    pixel = Pixel(type="facebook", name="Evil", pixel_id="1');</script><script>alert(1)</script>")
    head = str(render_head(pixel))
    assert "<script>alert(1)</script>" not in head
    assert "&lt;script&gt;" in head

    assert str(render_head(Pixel(type="unknown", name="x", pixel_id="1"))) == ""
    assert str(render_body(Pixel(type="facebook", name="x", pixel_id="1"))) == ""


# ---------- Themes ----------
def test_theme_gallery_and_apply(client):
    _login(client)
    page_id = _page(client)
    r = client.get("/admin/themes")
    assert r.status_code == 200
    assert b"Midnight" in r.data

    midnight = _theme_id(client, "midnight")
    r = _post(client, f"/admin/themes/{midnight}/apply", {"biolink_id": page_id}, follow_redirects=True)
    assert b"applied to /themed." in r.data
    with session_scope(client.application) as s:
        assert s.get(BioLink, page_id).theme_id == midnight

    anon = client.application.test_client()
    r = anon.get("/themed")
    assert r.status_code == 200
    assert b"--biolink-bg: #0f172a" in r.data

    r = _post(client, f"/admin/biolinks/{page_id}/theme/remove", follow_redirects=True)
    assert b"Theme removed" in r.data
    with session_scope(client.application) as s:
        assert s.get(BioLink, page_id).theme_id is None
    assert b"--biolink-bg: #ffffff" in anon.get("/themed").data


def test_premium_theme_needs_pro(client):
    _login(client)
    page_id = _page(client)
    sunset = _theme_id(client, "sunset")

    r = _post(client, f"/admin/themes/{sunset}/apply", {"biolink_id": page_id}, follow_redirects=True)
    assert b"Sunset is a premium theme. Upgrade to use it." in r.data
    with session_scope(client.application) as s:
        assert s.get(BioLink, page_id).theme_id is None

    r = _post(client, f"/admin/themes/{sunset}/duplicate", follow_redirects=True)
    assert b"premium theme" in r.data

    _grant(client, "bio.tier.pro")
    _post(client, f"/admin/themes/{sunset}/apply", {"biolink_id": page_id})
    with session_scope(client.application) as s:
        assert s.get(BioLink, page_id).theme_id == sunset


def test_apply_theme_to_unknown_page_is_404(client):
    _login(client)
    midnight = _theme_id(client, "midnight")
    assert _post(client, f"/admin/themes/{midnight}/apply", {"biolink_id": 4242}).status_code == 404
    assert _post(client, "/admin/themes/4242/apply", {"biolink_id": 1}).status_code == 404


def _theme_form(**overrides):
    data = {
        "name": "Brand",
        "category": "modern",
        "background_type": "gradient",
        "background_color": "#112233",
        "gradient_start": "#112233",
        "gradient_end": "#445566",
        "text_color": "#fafafa",
        "button_background_color": "#ff0066",
        "button_text_color": "#ffffff",
        "button_border_radius": "12px",
        "button_border_width": "0",
        "font_family": "Poppins",
    }
    data.update(overrides)
    return data


def test_custom_theme_lifecycle(client):
    _login(client)
    page_id = _page(client)

    r = _post(client, "/admin/themes/new", _theme_form(), follow_redirects=True)
    assert b"Theme &#39;Brand&#39; created." in r.data or b"Theme 'Brand' created." in r.data
    with session_scope(client.application) as s:
        theme = s.query(Theme).filter(Theme.name == "Brand").one()
        theme_id = theme.id
        assert theme.is_system is False
        assert theme.slug == "brand"
        assert theme.settings["background"]["type"] == "gradient"
        assert theme.settings["font_family"] == "Poppins"

    assert client.get(f"/admin/themes/{theme_id}/edit").status_code == 200

    r = _post(client, f"/admin/themes/{theme_id}/edit", _theme_form(name="Brand v2", text_color="#000000"), follow_redirects=True)
    assert b"Theme updated." in r.data
    with session_scope(client.application) as s:
        theme = s.get(Theme, theme_id)
        assert theme.name == "Brand v2"
        assert theme.settings["text_color"] == "#000000"

    r = _post(client, f"/admin/themes/{theme_id}/duplicate")
    assert r.status_code == 302
    with session_scope(client.application) as s:
        clone = s.query(Theme).filter(Theme.name == "Brand v2 (Copy)").one()
        assert clone.slug == "brand-v2-copy"
        assert clone.settings == s.get(Theme, theme_id).settings

    _post(client, f"/admin/themes/{theme_id}/apply", {"biolink_id": page_id})
    r = _post(client, f"/admin/themes/{theme_id}/delete", follow_redirects=True)
    assert b"deleted." in r.data
    with session_scope(client.application) as s:
        assert s.get(Theme, theme_id) is None
        assert s.get(BioLink, page_id).theme_id is None


def test_custom_theme_validation(client):
    _login(client)
    r = _post(client, "/admin/themes/new", _theme_form(name="", text_color="red", font_family="Comic Sans"), follow_redirects=True)
    assert b"Name is required." in r.data
    assert b"Text colour must be a hex colour." in r.data
    assert b"Font must be one of:" in r.data
    with session_scope(client.application) as s:
        assert s.query(Theme).filter(Theme.is_system.is_(False)).count() == 0


def test_system_themes_are_read_only(client):
    _login(client)
    midnight = _theme_id(client, "midnight")
    assert client.get(f"/admin/themes/{midnight}/edit").status_code == 404

    r = _post(client, f"/admin/themes/{midnight}/edit", _theme_form(), follow_redirects=True)
    assert b"Only your own custom themes can be changed." in r.data
    r = _post(client, f"/admin/themes/{midnight}/delete", follow_redirects=True)
    assert b"Only your own custom themes can be changed." in r.data

    # duplicating a system theme gives an editable copy
    r = _post(client, f"/admin/themes/{midnight}/duplicate")
    assert r.status_code == 302
    with session_scope(client.application) as s:
        assert s.query(Theme).filter(Theme.name == "Midnight (Copy)", Theme.is_system.is_(False)).count() == 1


def test_favourite_theme_json(client):
    _login(client)
    midnight = _theme_id(client, "midnight")
    headers = {"X-CSRF-Token": CSRF, "Accept": "application/json"}

    r = client.post(f"/admin/themes/{midnight}/favourite", headers=headers)
    assert r.status_code == 200
    assert r.json == {"ok": True, "favourited": True}

    r = client.post(f"/admin/themes/{midnight}/favourite", headers=headers)
    assert r.json == {"ok": True, "favourited": False}


def test_css_string_fills_defaults():
    css = css_string({"text_color": "#123456"})
    assert "--biolink-text: #123456" in css
    assert "--biolink-bg: #ffffff" in css
    assert "--biolink-font: Inter, sans-serif" in css


# ---------- Templates ----------
def test_template_gallery_and_preview(client):
    _login(client)
    r = client.get("/admin/templates")
    assert r.status_code == 200
    assert b"Small business" in r.data

    creator = _template_id(client, "creator-basic")
    assert client.get(f"/admin/templates/{creator}").status_code == 200

    r = client.get(f"/admin/templates/{creator}/preview?name=Jane&unknown=x")
    assert r.status_code == 200
    data = r.json
    assert data["settings"]["seo"] == {"title": "Jane", "description": "What you make and where to find it"}
    texts = [b["settings"].get("text") for b in data["blocks"]]
    assert "Jane" in texts
    link = next(b for b in data["blocks"] if b["type"] == "link")
    assert link["location_url"] == "https://example.com"

    assert client.get("/admin/templates/4242").status_code == 404


def test_use_template_creates_page(client):
    _login(client)
    creator = _template_id(client, "creator-basic")
    r = _post(
        client,
        f"/admin/templates/{creator}/use",
        {"url": "jane", "value_name": "Jane Doe", "value_website": "https://jane.example.com"},
    )
    assert r.status_code == 302

    with session_scope(client.application) as s:
        biolink = s.query(BioLink).filter(BioLink.url == "jane").one()
        assert r.headers["Location"].endswith(f"/admin/biolinks/{biolink.id}/editor")
        assert biolink.type == "biolink"
        assert biolink.settings["seo"]["title"] == "Jane Doe"
        blocks = sorted(biolink.blocks, key=lambda b: (b.region, b.order))
        assert [b.region for b in blocks].count("content") == 4
        link = next(b for b in blocks if b.type == "link")
        assert link.location_url == "https://jane.example.com"
        assert s.get(Template, creator).usage_count == 1

    # bad slug is reported on the template page
    r = _post(client, f"/admin/templates/{creator}/use", {"url": "admin"}, follow_redirects=True)
    assert r.status_code == 200
    with session_scope(client.application) as s:
        assert s.query(BioLink).count() == 1


def test_apply_template_replace_or_append(client):
    _login(client)
    page_id = _page(client, "shop")
    _post(client, f"/admin/biolinks/{page_id}/blocks/new", {"type": "heading", "region": "content"})
    business = _template_id(client, "small-business")

    r = _post(
        client,
        f"/admin/templates/{business}/apply",
        {"biolink_id": page_id, "replace_existing": "0", "value_business_name": "Acme"},
        follow_redirects=True,
    )
    assert b"(4 blocks)" in r.data
    with session_scope(client.application) as s:
        biolink = s.get(BioLink, page_id)
        assert len(biolink.blocks) == 5
        content_orders = sorted(b.order for b in biolink.blocks if b.region == "content")
        assert content_orders == [1, 2, 3, 4]
        header = next(b for b in biolink.blocks if b.region == "header")
        assert header.settings["text"] == "Acme"

    _post(client, f"/admin/templates/{business}/apply", {"biolink_id": page_id, "replace_existing": "1"})
    with session_scope(client.application) as s:
        biolink = s.get(BioLink, page_id)
        assert len(biolink.blocks) == 4
        header = next(b for b in biolink.blocks if b.region == "header")
        assert header.settings["text"] == "Your business"


def test_premium_template_is_locked(client):
    _login(client)
    portfolio = _template_id(client, "portfolio-pro")
    r = _post(client, f"/admin/templates/{portfolio}/use", {"url": "folio"}, follow_redirects=True)
    assert b"Portfolio is a premium template. Upgrade to use it." in r.data
    with session_scope(client.application) as s:
        assert s.query(BioLink).count() == 0

    _grant(client, "bio.tier.ultimate")
    r = _post(client, f"/admin/templates/{portfolio}/use", {"url": "folio"})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        assert s.query(BioLink).filter(BioLink.url == "folio").count() == 1


def test_save_page_as_template_and_delete(client):
    _login(client)
    page_id = _page(client, "source-page")
    _post(client, f"/admin/biolinks/{page_id}/blocks/new", {"type": "heading", "region": "header"})
    _post(client, f"/admin/biolinks/{page_id}/blocks/new", {"type": "paragraph", "region": "content"})

    r = _post(client, f"/admin/biolinks/{page_id}/save-as-template", {"name": "", "category": ""}, follow_redirects=True)
    assert b"Name is required." in r.data
    assert b"Category is required." in r.data

    r = _post(client, f"/admin/biolinks/{page_id}/save-as-template", {"name": "My Layout", "category": "personal"})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        template = s.query(Template).filter(Template.name == "My Layout").one()
        template_id = template.id
        assert template.is_system is False
        assert template.slug == "my-layout"
        assert sorted((b["type"], b["region"]) for b in template.blocks_json) == [("heading", "header"), ("paragraph", "content")]

    other_page = _page(client, "copy-target")
    _post(client, f"/admin/templates/{template_id}/apply", {"biolink_id": other_page})
    with session_scope(client.application) as s:
        assert sorted(b.type for b in s.get(BioLink, other_page).blocks) == ["heading", "paragraph"]

    creator = _template_id(client, "creator-basic")
    r = _post(client, f"/admin/templates/{creator}/delete", follow_redirects=True)
    assert b"Only your own templates can be deleted." in r.data

    r = _post(client, f"/admin/templates/{template_id}/delete", follow_redirects=True)
    assert b"deleted." in r.data
    with session_scope(client.application) as s:
        assert s.get(Template, template_id) is None


def test_replace_placeholders_nested():
    value = {"a": "{{ name }} rocks", "b": ["{{missing}}", 3], "c": None}
    assert replace_placeholders(value, {"name": "Jane"}) == {"a": "Jane rocks", "b": ["{{missing}}", 3], "c": None}

    template = Template(placeholders={"name": "Default"}, blocks_json=[{"settings": {"text": "{{name}}"}}], settings_json={})
    assert preview(template, {"name": ""})["blocks"][0]["settings"]["text"] == "Default"
