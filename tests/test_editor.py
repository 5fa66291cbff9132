import pytest
from werkzeug.security import generate_password_hash

from app.biohost import create_app, entitlements
from app.biohost.db import session_scope
from app.biohost.models import Base, Permission, Role, User
from app.biohost.modules.analytics.models import Click
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.editor.models import Block
from app.biohost.modules.editor.renderer import block_classes, embed_url, region_classes
from app.biohost.modules.editor.service import layout_code, region_enabled

CSRF = "test-csrf-token"

PERMISSIONS = ("biolinks.view", "biolinks.create", "biolinks.edit", "biolinks.delete")


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


def _post_json(client, url, payload):
    return client.post(url, json=payload, headers={"X-CSRF-Token": CSRF, "Accept": "application/json"})


def _grant(client, code):
    with session_scope(client.application) as s:
        u = s.query(User).one()
        entitlements.set_entitlement(s, u, code, enabled=True, limit=None)


def _page(client, slug="my-page"):
    _post(client, "/admin/biolinks/new", {"type": "biolink", "url": slug})
    with session_scope(client.application) as s:
        return s.query(BioLink).filter(BioLink.url == slug).one().id


def _add(client, page_id, block_type, region="content"):
    return _post(client, f"/admin/biolinks/{page_id}/blocks/new", {"type": block_type, "region": region}, follow_redirects=True)


def _blocks(client, page_id, region="content"):
    with session_scope(client.application) as s:
        rows = (
            s.query(Block)
            .filter(Block.biolink_id == page_id, Block.region == region)
            .order_by(Block.order.asc())
            .all()
        )
        return [(b.id, b.type, b.order) for b in rows]


def _biolink(client, page_id):
    with session_scope(client.application) as s:
        return s.get(BioLink, page_id)


def test_editor_page_only_for_bio_pages(client):
    _login(client)
    page_id = _page(client)
    r = client.get(f"/admin/biolinks/{page_id}/editor")
    assert r.status_code == 200

    _post(client, "/admin/biolinks/new", {"type": "link", "url": "short", "location_url": "https://example.com"})
    with session_scope(client.application) as s:
        short_id = s.query(BioLink).filter(BioLink.url == "short").one().id
    assert client.get(f"/admin/biolinks/{short_id}/editor").status_code == 404


def test_add_blocks_in_order(client):
    _login(client)
    page_id = _page(client)
    r = _add(client, page_id, "heading")
    assert b"Heading block added." in r.data
    _add(client, page_id, "paragraph")
    _add(client, page_id, "link")

    blocks = _blocks(client, page_id)
    assert [(t, o) for _id, t, o in blocks] == [("heading", 1), ("paragraph", 2), ("link", 3)]

    with session_scope(client.application) as s:
        link = s.get(Block, blocks[2][0])
        assert link.settings["name"] == "My link"
        assert link.hlcrf_id == "C-3"


def test_unknown_block_type(client):
    _login(client)
    page_id = _page(client)
    r = _add(client, page_id, "carousel")
    assert b"Unknown block type: carousel" in r.data
    assert _blocks(client, page_id) == []


def test_tier_gating(client):
    _login(client)
    page_id = _page(client)

    r = _add(client, page_id, "divider")
    assert b"Divider blocks need the Pro plan." in r.data
    r = _add(client, page_id, "cta")
    assert b"Call to action blocks need the Ultimate plan." in r.data
    assert _blocks(client, page_id) == []

    _grant(client, "bio.tier.pro")
    _add(client, page_id, "divider")
    r = _add(client, page_id, "cta")
    assert b"need the Ultimate plan" in r.data
    assert [t for _id, t, _o in _blocks(client, page_id)] == ["divider"]

    _grant(client, "bio.tier.ultimate")
    _add(client, page_id, "cta")
    assert [t for _id, t, _o in _blocks(client, page_id)] == ["divider", "cta"]


def test_region_rules(client):
    _login(client)
    page_id = _page(client)

    r = _add(client, page_id, "paragraph", region="footer")
    assert b"Paragraph blocks cannot be placed in the footer region." in r.data

    _add(client, page_id, "socials", region="footer")
    assert [t for _id, t, _o in _blocks(client, page_id, "footer")] == ["socials"]

    r = _add(client, page_id, "heading", region="sidebar")
    assert b"Unknown region: sidebar" in r.data


def test_edit_block_settings_and_embed_hosts(client):
    _login(client)
    page_id = _page(client)
    _add(client, page_id, "link")
    _add(client, page_id, "youtube")
    link_id, yt_id = [b[0] for b in _blocks(client, page_id)]

    r = _post(
        client,
        f"/admin/biolinks/{page_id}/blocks/{link_id}/edit",
        {"location_url": "https://example.com/shop", "setting_name": "Shop", "setting_open_in_new_tab": "1"},
        follow_redirects=True,
    )
    assert b"Block saved." in r.data
    with session_scope(client.application) as s:
        link = s.get(Block, link_id)
        assert link.location_url == "https://example.com/shop"
        assert link.settings["name"] == "Shop"
        assert link.settings["open_in_new_tab"] is True

    r = _post(
        client,
        f"/admin/biolinks/{page_id}/blocks/{yt_id}/edit",
        {"location_url": "https://vimeo.com/123"},
        follow_redirects=True,
    )
    assert b"YouTube URLs must be on: www.youtube.com, youtu.be" in r.data

    _post(client, f"/admin/biolinks/{page_id}/blocks/{yt_id}/edit", {"location_url": "https://youtu.be/abc123"})
    with session_scope(client.application) as s:
        yt = s.get(Block, yt_id)
        assert embed_url(yt) == "https://www.youtube.com/embed/abc123"


def test_embed_url_shapes():
    assert embed_url(Block(type="youtube", location_url="https://www.youtube.com/watch?v=dQw4w9WgXcQ")) == (
        "https://www.youtube.com/embed/dQw4w9WgXcQ"
    )
    assert embed_url(Block(type="spotify", location_url="https://open.spotify.com/album/xyz")) == (
        "https://open.spotify.com/embed/album/xyz"
    )
    assert embed_url(Block(type="youtube", location_url="https://evil.example.com/watch?v=1")) is None
    assert embed_url(Block(type="link", location_url="https://example.com")) is None


def test_move_up_down_and_reorder(client):
    _login(client)
    page_id = _page(client)
    for t in ("heading", "paragraph", "link"):
        _add(client, page_id, t)
    a, b, c = [x[0] for x in _blocks(client, page_id)]

    _post(client, f"/admin/biolinks/{page_id}/blocks/{c}/up")
    assert [x[0] for x in _blocks(client, page_id)] == [a, c, b]

    # already first: no-op
    _post(client, f"/admin/biolinks/{page_id}/blocks/{a}/up")
    assert [x[0] for x in _blocks(client, page_id)] == [a, c, b]

    _post(client, f"/admin/biolinks/{page_id}/blocks/{a}/down")
    assert [x[0] for x in _blocks(client, page_id)] == [c, a, b]

    r = _post_json(client, f"/admin/biolinks/{page_id}/blocks/reorder", {"region": "content", "order": [b, 9999, a]})
    assert r.status_code == 200
    assert r.json == {"ok": True, "order": [b, a, c]}
    assert [(x[0], x[2]) for x in _blocks(client, page_id)] == [(b, 1), (a, 2), (c, 3)]

    r = _post_json(client, f"/admin/biolinks/{page_id}/blocks/reorder", {"region": "content", "order": "nope"})
    assert r.status_code == 400
    assert r.json["ok"] is False


def test_reorder_requires_csrf(client):
    _login(client)
    page_id = _page(client)
    r = client.post(f"/admin/biolinks/{page_id}/blocks/reorder", json={"order": []})
    assert r.status_code == 400


def test_move_block_between_regions(client):
    _login(client)
    page_id = _page(client)
    _add(client, page_id, "heading")
    _add(client, page_id, "link")
    _add(client, page_id, "socials", region="footer")
    heading, link = [x[0] for x in _blocks(client, page_id)]
    (socials,) = [x[0] for x in _blocks(client, page_id, "footer")]

    r = _post_json(
        client,
        f"/admin/biolinks/{page_id}/blocks/{heading}/region",
        {"region": "footer", "before_block_id": socials},
    )
    assert r.status_code == 200
    assert r.json == {"ok": True, "region": "footer", "order": 1, "hlcrf_id": "F-1"}
    assert [x[0] for x in _blocks(client, page_id, "footer")] == [heading, socials]
    assert [(x[0], x[2]) for x in _blocks(client, page_id)] == [(link, 1)]

    _add(client, page_id, "paragraph")
    (para,) = [x[0] for x in _blocks(client, page_id) if x[1] == "paragraph"]
    r = _post_json(client, f"/admin/biolinks/{page_id}/blocks/{para}/region", {"region": "header"})
    assert r.status_code == 400
    assert "cannot be placed in the header region" in r.json["error"]


def test_toggle_duplicate_delete(client):
    _login(client)
    page_id = _page(client)
    _add(client, page_id, "heading")
    _add(client, page_id, "link")
    heading, link = [x[0] for x in _blocks(client, page_id)]

    r = client.post(
        f"/admin/biolinks/{page_id}/blocks/{heading}/toggle",
        data={"csrf_token": CSRF},
        headers={"Accept": "application/json"},
    )
    assert r.json == {"ok": True, "is_enabled": False}

    _post(client, f"/admin/biolinks/{page_id}/blocks/{heading}/duplicate")
    blocks = _blocks(client, page_id)
    assert [x[1] for x in blocks] == ["heading", "heading", "link"]
    assert [x[2] for x in blocks] == [1, 2, 3]

    _post(client, f"/admin/biolinks/{page_id}/blocks/{heading}/delete")
    blocks = _blocks(client, page_id)
    assert [(x[1], x[2]) for x in blocks] == [("heading", 1), ("link", 2)]

    assert _post(client, f"/admin/biolinks/{page_id}/blocks/99999/delete").status_code == 404


def test_breakpoint_visibility(client):
    _login(client)
    page_id = _page(client)
    _add(client, page_id, "heading")
    (heading,) = [x[0] for x in _blocks(client, page_id)]
    url = f"/admin/biolinks/{page_id}/blocks/{heading}/breakpoints"

    r = client.post(f"{url}/desktop", data={"csrf_token": CSRF}, headers={"Accept": "application/json"})
    assert r.json == {"ok": True, "hidden": ["desktop"]}
    r = client.post(f"{url}/phone", data={"csrf_token": CSRF}, headers={"Accept": "application/json"})
    assert r.json == {"ok": True, "hidden": ["phone", "desktop"]}

    with session_scope(client.application) as s:
        block = s.get(Block, heading)
        assert block.is_visible_on("tablet")
        assert not block.is_visible_on("phone")
        assert block_classes(block) == "block block-heading hide-on-phone hide-on-desktop"

    r = client.post(f"{url}/watch", data={"csrf_token": CSRF}, headers={"Accept": "application/json"})
    assert r.status_code == 400

    r = client.post(f"{url}/reset", data={"csrf_token": CSRF}, headers={"Accept": "application/json"})
    assert r.json == {"ok": True, "hidden": []}
    with session_scope(client.application) as s:
        assert s.get(Block, heading).breakpoint_visibility is None


def test_layout_presets_and_regions(client):
    _login(client)
    page_id = _page(client)

    _post(client, f"/admin/biolinks/{page_id}/layout/preset", {"preset": "blog"})
    biolink = _biolink(client, page_id)
    assert biolink.get_setting("layout") == {"phone": "C", "tablet": "HCF", "desktop": "HCRF"}
    assert biolink.get_setting("layout_preset") == "blog"

    r = _post(client, f"/admin/biolinks/{page_id}/layout/preset", {"preset": "magazine"}, follow_redirects=True)
    assert b"Unknown layout preset: magazine" in r.data

    _post(client, f"/admin/biolinks/{page_id}/layout/regions/left", {"enabled": "1"})
    biolink = _biolink(client, page_id)
    assert biolink.get_setting("layout.desktop") == "HLCRF"
    assert biolink.get_setting("layout_preset") == "custom"

    _post(client, f"/admin/biolinks/{page_id}/layout/regions/header", {"enabled": "0"})
    assert _biolink(client, page_id).get_setting("layout.desktop") == "LCRF"

    r = _post(client, f"/admin/biolinks/{page_id}/layout/regions/content", {"enabled": "0"}, follow_redirects=True)
    assert b"The content region cannot be disabled." in r.data
    assert _biolink(client, page_id).get_setting("layout.desktop") == "LCRF"


def test_layout_code_helpers():
    assert layout_code(["footer", "header"]) == "HCF"
    assert layout_code([]) == "C"
    assert region_enabled("HLCRF", "left")
    assert not region_enabled("C", "footer")
    assert region_classes({"phone": "C", "tablet": "HCF", "desktop": "HCF"}, "header") == "region-header hide-on-phone"


def test_public_page_renders_blocks_and_tracks_clicks(client):
    _login(client)
    page_id = _page(client, "bio-demo")
    _add(client, page_id, "heading")
    _add(client, page_id, "link")
    heading, link = [x[0] for x in _blocks(client, page_id)]
    _post(client, f"/admin/biolinks/{page_id}/blocks/{heading}/edit", {"setting_text": "Hello there"})
    _post(
        client,
        f"/admin/biolinks/{page_id}/blocks/{link}/edit",
        {"location_url": "https://example.com/shop", "setting_name": "Visit shop"},
    )

    anon = client.application.test_client()
    r = anon.get("/bio-demo")
    assert r.status_code == 200
    assert b"Hello there" in r.data
    assert f"/bio-demo/b/{link}".encode() in r.data

    r = anon.get(f"/bio-demo/b/{link}")
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.com/shop"

    # only link-style blocks are tracked
    assert anon.get(f"/bio-demo/b/{heading}").status_code == 404

    with session_scope(client.application) as s:
        biolink = s.get(BioLink, page_id)
        assert biolink.clicks == 1
        assert s.get(Block, link).clicks == 1
        assert s.query(Click).filter(Click.block_id == link).count() == 1


def test_disabled_block_is_hidden(client):
    _login(client)
    page_id = _page(client, "hidden-demo")
    _add(client, page_id, "link")
    (link,) = [x[0] for x in _blocks(client, page_id)]
    _post(client, f"/admin/biolinks/{page_id}/blocks/{link}/edit", {"location_url": "https://example.com/x"})
    _post(client, f"/admin/biolinks/{page_id}/blocks/{link}/toggle")

    r = client.get("/hidden-demo")
    assert f"/hidden-demo/b/{link}".encode() not in r.data
    assert client.get(f"/hidden-demo/b/{link}").status_code == 404


def test_subscribe_form(client):
    _login(client)
    page_id = _page(client, "newsletter")
    _add(client, page_id, "email_collector")
    (collector,) = [x[0] for x in _blocks(client, page_id)]

    anon = client.application.test_client()
    r = anon.post(f"/newsletter/b/{collector}/subscribe", data={"email": "fan@example.com"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/newsletter?subscribed=1#block-{collector}")

    r = anon.post(f"/newsletter/b/{collector}/subscribe", data={"email": "not-an-email"})
    assert r.headers["Location"].endswith(f"/newsletter?subscribed=0#block-{collector}")
