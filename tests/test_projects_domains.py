import json
import logging

import dns.exception
import pytest
from werkzeug.security import generate_password_hash

from app.biohost import create_app
from app.biohost.db import session_scope
from app.biohost.models import AuditEvent, Base, Permission, Role, User
from app.biohost.modules.biolinks.models import BioLink
from app.biohost.modules.domains import service as domain_service
from app.biohost.modules.domains.models import Domain
from app.biohost.modules.domains.service import is_domain_reserved, normalise_host, validate_domain_format
from app.biohost.modules.projects.models import Project

CSRF = "test-csrf-token"

PERMISSIONS = (
    "biolinks.view",
    "biolinks.create",
    "biolinks.edit",
    "biolinks.delete",
    "projects.manage",
    "domains.manage",
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

    # no real DNS in tests
    monkeypatch.setattr(domain_service, "_txt_records", lambda host: [])
    monkeypatch.setattr(domain_service, "_cname_record", lambda host: None)
    monkeypatch.setattr(domain_service, "_a_records", lambda host: [])

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


def _link(client, slug, target="https://example.com/landing", **extra):
    data = {"type": "link", "url": slug, "location_url": target}
    data.update(extra)
    _post(client, "/admin/biolinks/new", data)
    with session_scope(client.application) as s:
        return s.query(BioLink).filter(BioLink.url == slug).order_by(BioLink.id.desc()).first().id


def _project(client, name, color="#ff8800"):
    _post(client, "/admin/projects/new", {"name": name, "color": color})
    with session_scope(client.application) as s:
        return s.query(Project).filter(Project.name == name).one().id


def _domain(client, host="links.example.com"):
    with session_scope(client.application) as s:
        return s.query(Domain).filter(Domain.host == host).one_or_none()


def _verified_domain(client, monkeypatch, host="links.example.com"):
    _post(client, "/admin/domains/new", {"host": host})
    token = _domain(client, host).verification_token
    monkeypatch.setattr(
        domain_service,
        "_txt_records",
        lambda h: [f'"host-uk-verify={token}"'] if h == f"_biohost-verify.{host}" else [],
    )
    d = _domain(client, host)
    _post(client, f"/admin/domains/{d.id}/verify")
    _post(client, f"/admin/domains/{d.id}/toggle")
    return _domain(client, host)


# ---------- Projects ----------
def test_create_and_list_projects(client):
    _login(client)
    r = _post(client, "/admin/projects/new", {"name": "Spring launch", "color": "#00aa55"}, follow_redirects=True)
    assert b"Project &#39;Spring launch&#39; created." in r.data or b"Project 'Spring launch' created." in r.data

    r = _post(client, "/admin/projects/new", {"name": "Bad", "color": "green"}, follow_redirects=True)
    assert b"Colour must be a hex value like #6366f1." in r.data

    r = _post(client, "/admin/projects/new", {"name": "  ", "color": ""}, follow_redirects=True)
    assert b"Name is required." in r.data

    with session_scope(client.application) as s:
        assert [p.name for p in s.query(Project).all()] == ["Spring launch"]

    r = client.get("/admin/projects")
    assert r.status_code == 200
    assert b"Spring launch" in r.data


def test_edit_project(client):
    _login(client)
    project_id = _project(client, "Old name")
    _post(client, f"/admin/projects/{project_id}/edit", {"name": "New name", "color": "#123abc"})
    with session_scope(client.application) as s:
        p = s.get(Project, project_id)
        assert (p.name, p.color) == ("New name", "#123abc")


def test_assign_via_json(client):
    _login(client)
    project_id = _project(client, "Drag target")
    link_id = _link(client, "dragme")

    r = client.post(
        "/admin/projects/assign",
        json={"biolink_id": link_id, "project_id": project_id},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 200
    assert r.json == {"ok": True, "biolink_id": link_id, "project_id": project_id}

    r = client.post(
        "/admin/projects/assign",
        json={"biolink_id": link_id, "project_id": -1},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.json["project_id"] is None

    r = client.post(
        "/admin/projects/assign",
        json={"biolink_id": link_id, "project_id": 424242},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 404
    assert r.json["ok"] is False


def test_delete_project_unassigns_links(client):
    _login(client)
    project_id = _project(client, "Temp")
    link_id = _link(client, "keeper", project_id=str(project_id))
    with session_scope(client.application) as s:
        assert s.get(BioLink, link_id).project_id == project_id

    r = _post(client, f"/admin/projects/{project_id}/delete", {"mode": "unassign"}, follow_redirects=True)
    assert b"1 link(s) moved to unassigned." in r.data
    with session_scope(client.application) as s:
        assert s.get(Project, project_id) is None
        assert s.get(BioLink, link_id).project_id is None


def test_delete_project_with_links(client):
    _login(client)
    project_id = _project(client, "Doomed")
    link_id = _link(client, "goner", project_id=str(project_id))

    r = _post(client, f"/admin/projects/{project_id}/delete", {"mode": "purge"}, follow_redirects=True)
    assert b"Invalid delete mode." in r.data

    r = _post(client, f"/admin/projects/{project_id}/delete", {"mode": "delete"}, follow_redirects=True)
    assert b"and 1 link(s) deleted." in r.data
    with session_scope(client.application) as s:
        assert s.get(BioLink, link_id) is None


def test_move_all_links_between_projects(client):
    _login(client)
    a = _project(client, "A")
    b = _project(client, "B")
    first = _link(client, "first-link", project_id=str(a))
    second = _link(client, "second-link", project_id=str(a))

    r = _post(client, f"/admin/projects/{a}/move", {"target_project_id": str(b)}, follow_redirects=True)
    assert b"Moved 2 link(s)." in r.data
    with session_scope(client.application) as s:
        assert {s.get(BioLink, first).project_id, s.get(BioLink, second).project_id} == {b}

    r = _post(client, f"/admin/projects/{b}/move", {"target_project_id": "777"}, follow_redirects=True)
    assert b"Target project not found." in r.data


# ---------- Domains ----------
def test_domain_helpers():
    assert normalise_host("https://Links.Example.com/") == "links.example.com"
    assert validate_domain_format("links.example.com")
    assert not validate_domain_format("localhost")
    assert not validate_domain_format("-bad-.example.com")
    assert is_domain_reserved("bio.host.uk.com")
    assert is_domain_reserved("me.lnktr.fyi")
    assert not is_domain_reserved("nothost.uk.com")


def test_add_domain_validation(client):
    _login(client)
    r = _post(client, "/admin/domains/new", {"host": "not a domain"}, follow_redirects=True)
    assert b"Please enter a valid domain name" in r.data
    r = _post(client, "/admin/domains/new", {"host": "shop.host.uk.com"}, follow_redirects=True)
    assert b"This domain is reserved and cannot be used." in r.data

    r = _post(client, "/admin/domains/new", {"host": "https://Links.Example.com"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"_biohost-verify.links.example.com" in r.data
    d = _domain(client)
    assert d.verification_status == "pending"
    assert d.is_enabled is False
    assert d.txt_record_value == f"host-uk-verify={d.verification_token}"

    r = _post(client, "/admin/domains/new", {"host": "links.example.com"}, follow_redirects=True)
    assert b"This domain is already registered." in r.data


def test_domain_limit(client):
    _login(client)
    _post(client, "/admin/domains/new", {"host": "one.example.com"})
    r = _post(client, "/admin/domains/new", {"host": "two.example.com"}, follow_redirects=True)
    assert b"limit" in r.data
    assert _domain(client, "two.example.com") is None


def test_enable_requires_verification(client, monkeypatch):
    _login(client)
    _post(client, "/admin/domains/new", {"host": "links.example.com"})
    d = _domain(client)

    r = _post(client, f"/admin/domains/{d.id}/toggle", follow_redirects=True)
    assert b"Verify links.example.com before enabling it." in r.data
    assert _domain(client).is_enabled is False

    r = _post(client, f"/admin/domains/{d.id}/verify", follow_redirects=True)
    assert b"Verification failed." in r.data
    assert _domain(client).verification_status == "failed"

    token = d.verification_token
    monkeypatch.setattr(domain_service, "_txt_records", lambda h: [f"host-uk-verify={token}"])
    r = _post(client, f"/admin/domains/{d.id}/verify", follow_redirects=True)
    assert b"links.example.com verified." in r.data

    _post(client, f"/admin/domains/{d.id}/toggle")
    d = _domain(client)
    assert d.is_verified and d.is_enabled


def test_cname_verification(client, monkeypatch):
    _login(client)
    _post(client, "/admin/domains/new", {"host": "go.example.com"})
    d = _domain(client, "go.example.com")
    monkeypatch.setattr(domain_service, "_cname_record", lambda h: "bio.host.uk.com.")
    _post(client, f"/admin/domains/{d.id}/verify")
    assert _domain(client, "go.example.com").is_verified


def test_regenerate_token_resets_verification(client, monkeypatch):
    _login(client)
    d = _verified_domain(client, monkeypatch)
    old_token = d.verification_token
    _post(client, f"/admin/domains/{d.id}/regenerate-token")
    d = _domain(client)
    assert d.verification_token != old_token
    assert d.verification_status == "pending"
    assert d.is_enabled is False


def test_dns_diagnostics(client, monkeypatch):
    _login(client)
    _post(client, "/admin/domains/new", {"host": "links.example.com"})
    d = _domain(client)
    monkeypatch.setattr(domain_service, "_a_records", lambda h: ["203.0.113.7"])
    r = client.get(f"/admin/domains/{d.id}?check=1")
    assert r.status_code == 200
    assert b"203.0.113.7" in r.data


def test_serving_on_custom_domain(client, monkeypatch):
    _login(client)
    d = _verified_domain(client, monkeypatch)
    _link(client, "promo", "https://example.com/custom", domain_id=str(d.id))
    _link(client, "promo", "https://example.com/default")

    custom = client.application.test_client()
    r = custom.get("/promo", base_url="http://links.example.com")
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.com/custom"

    r = client.get("/promo")
    assert r.headers["Location"] == "https://example.com/default"

    # disabled domains are unknown hosts
    _post(client, f"/admin/domains/{d.id}/toggle")
    assert custom.get("/promo", base_url="http://links.example.com").status_code == 404


def test_custom_domain_index_and_not_found(client, monkeypatch):
    _login(client)
    d = _verified_domain(client, monkeypatch)
    _post(client, "/admin/biolinks/new", {"type": "biolink", "url": "home", "domain_id": str(d.id)})
    with session_scope(client.application) as s:
        page_id = s.query(BioLink).filter(BioLink.url == "home").one().id

    custom = client.application.test_client()
    assert custom.get("/", base_url="http://links.example.com").status_code == 404

    r = _post(
        client,
        f"/admin/domains/{d.id}/settings",
        {"biolink_id": "", "custom_index_url": "https://example.com/welcome", "custom_not_found_url": "not-a-url"},
        follow_redirects=True,
    )
    assert b"Not found URL must be a valid http(s) URL." in r.data

    _post(
        client,
        f"/admin/domains/{d.id}/settings",
        {"biolink_id": "", "custom_index_url": "https://example.com/welcome", "custom_not_found_url": "https://example.com/404"},
    )
    r = custom.get("/", base_url="http://links.example.com")
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.com/welcome"

    r = custom.get("/missing", base_url="http://links.example.com")
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.com/404"

    _post(client, f"/admin/domains/{d.id}/settings", {"biolink_id": str(page_id)})
    r = custom.get("/", base_url="http://links.example.com")
    assert r.status_code == 200


def test_delete_domain_detaches_links(client, monkeypatch):
    _login(client)
    d = _verified_domain(client, monkeypatch)
    link_id = _link(client, "moving", domain_id=str(d.id))

    r = _post(client, f"/admin/domains/{d.id}/delete", follow_redirects=True)
    assert b"links.example.com removed." in r.data
    assert _domain(client) is None
    with session_scope(client.application) as s:
        assert s.get(BioLink, link_id).domain_id is None
    assert client.get("/moving").status_code == 302


def test_verify_dns_timeout_counts_as_failure(client, monkeypatch, caplog):
    _login(client)
    _post(client, "/admin/domains/new", {"host": "links.example.com"})
    d = _domain(client)

    def timeout(host):
        raise dns.exception.Timeout()

    monkeypatch.setattr(domain_service, "_txt_records", timeout)
    monkeypatch.setattr(domain_service, "_cname_record", timeout)
    with caplog.at_level(logging.WARNING, logger="app.biohost.modules.domains.service"):
        r = _post(client, f"/admin/domains/{d.id}/verify", follow_redirects=True)

    assert r.status_code == 200
    assert b"Verification failed." in r.data
    assert _domain(client).verification_status == "failed"
    assert "TXT lookup failed for links.example.com" in caplog.text
    assert "CNAME lookup failed for links.example.com" in caplog.text


def test_delete_domain_renames_clashing_slugs(client, monkeypatch):
    _login(client)
    d = _verified_domain(client, monkeypatch)
    custom_id = _link(client, "promo", "https://example.com/custom", domain_id=str(d.id))
    default_id = _link(client, "promo", "https://example.com/default")
    _link(client, "promo-copy", "https://example.com/taken")

    r = _post(client, f"/admin/domains/{d.id}/delete", follow_redirects=True)
    assert b"/promo -&gt; /promo-copy-2" in r.data

    with session_scope(client.application) as s:
        rows = s.query(BioLink).filter(BioLink.url == "promo", BioLink.domain_id.is_(None)).all()
        assert [b.id for b in rows] == [default_id]
        moved = s.get(BioLink, custom_id)
        assert (moved.url, moved.domain_id) == ("promo-copy-2", None)

        ev = s.query(AuditEvent).filter(AuditEvent.action == "domain.delete").one()
        meta = json.loads(ev.metadata_json)
        assert meta["biolinks_detached"] == 1
        assert meta["renamed"] == {"promo": "promo-copy-2"}

    r = client.get("/promo")
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.com/default"
    r = client.get("/promo-copy-2")
    assert r.headers["Location"] == "https://example.com/custom"
