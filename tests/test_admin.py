"""Tests for user management, audit log, diagnostics and landing content."""
from collections import defaultdict

import pytest

from app.stablecrm import auth, create_app
from app.stablecrm.db import session_scope
from app.stablecrm.models import Base, User
from app.stablecrm.modules.landing.models import LandingContent
from app.stablecrm.vk_client import VKClient, VKUser


def _fake_vk_user(self, access_token, *, email=None):
    return VKUser(id=access_token[3:], first_name="Test", last_name="User", email=email)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setattr(auth, "_login_attempts", defaultdict(list))
    monkeypatch.setattr(VKClient, "get_current_user", _fake_vk_user)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add_all(
            [
                User(vk_id="1", name="Admin", role="administrator", is_active=True),
                User(vk_id="3", name="Observer", role="observer", is_active=True),
                LandingContent(section="hero", title="Солнечная Поляна", content="Добро пожаловать"),
                LandingContent(section="prices", title="Цены", is_visible=False),
            ]
        )
    return app


def _login(app, vk_id):
    c = app.test_client()
    r = c.post("/api/auth/vk", json={"accessToken": f"vk-{vk_id}"})
    assert r.status_code == 200
    c.environ_base["HTTP_X_CSRF_TOKEN"] = c.get("/api/auth/csrf").json["csrfToken"]
    return c


def _user_id(app, vk_id):
    with session_scope(app) as s:
        return s.query(User).filter(User.vk_id == vk_id).one().id


def test_change_role(app):
    admin = _login(app, "1")
    observer_id = _user_id(app, "3")

    r = admin.put(f"/api/users/{observer_id}/role", json={"role": "instructor"})
    assert r.status_code == 200
    assert r.json["role"] == "instructor"

    assert admin.put(f"/api/users/{observer_id}/role", json={"role": "owner"}).status_code == 400
    assert admin.put(f"/api/users/{observer_id}/role", json={"role": 5}).status_code == 400
    assert admin.put("/api/users/999/role", json={"role": "observer"}).status_code == 404

    r = admin.put(f"/api/users/{_user_id(app, '1')}/role", json={"role": "observer"})
    assert r.status_code == 400
    assert "own role" in r.json["error"]

    # The promoted user can now create records.
    promoted = _login(app, "3")
    assert promoted.post("/api/clients", json={"name": "Анна"}).status_code == 201


def test_deactivated_user_loses_session(app):
    observer = _login(app, "3")
    assert observer.get("/api/horses").status_code == 200

    admin = _login(app, "1")
    r = admin.put(f"/api/users/{_user_id(app, '3')}/active", json={"isActive": False})
    assert r.status_code == 200
    assert r.json["isActive"] is False

    assert observer.get("/api/horses").status_code == 401


def test_users_endpoints_require_administrator(app):
    observer = _login(app, "3")
    assert observer.get("/api/users").status_code == 403
    assert observer.get("/api/admin/audit").status_code == 403
    assert observer.get("/api/admin/diagnostics").status_code == 403


def test_audit_log_filters(app):
    admin = _login(app, "1")
    admin.post("/api/horses", json={"nickname": "Буран", "breed": "X", "age": 4})

    events = admin.get("/api/admin/audit").json
    assert events[0]["action"] == "horse.create"
    assert events[0]["actorUserName"] == "Admin"
    assert events[0]["metadata"]["nickname"] == "Буран"

    assert {e["action"] for e in admin.get("/api/admin/audit?action=auth").json} == {"auth.login"}
    assert admin.get("/api/admin/audit?actor=nobody").json == []
    horse_events = admin.get("/api/admin/audit?entityType=Horse&entityId=1").json
    assert [e["action"] for e in horse_events] == ["horse.create"]
    assert admin.get("/api/admin/audit?dateFrom=2000-01-01&dateTo=2000-01-02").json == []
    assert admin.get("/api/admin/audit?dateFrom=yesterday").status_code == 400


def test_diagnostics(app):
    admin = _login(app, "1")
    r = admin.get("/api/admin/diagnostics")
    assert r.status_code == 200
    assert r.json["dbConnected"] is True
    assert r.json["counts"]["users"] == 2
    assert r.json["counts"]["landingContent"] == 2


def test_landing_content_public_and_editable(app):
    anon = app.test_client()
    r = anon.get("/api/landing-content")
    assert r.status_code == 200
    assert [b["section"] for b in r.json] == ["hero"]

    admin = _login(app, "1")
    assert [b["section"] for b in admin.get("/api/landing-content").json] == ["hero", "prices"]

    prices_id = admin.get("/api/landing-content").json[1]["id"]
    r = admin.put(f"/api/landing-content/{prices_id}", json={"isVisible": True, "content": "от 1500 ₽"})
    assert r.status_code == 200
    assert r.json["content"] == "от 1500 ₽"
    assert len(anon.get("/api/landing-content").json) == 2

    r = admin.post("/api/landing-content", json={"section": "contacts", "title": "Контакты"})
    assert r.status_code == 201
    assert admin.post("/api/landing-content", json={"section": "contacts"}).status_code == 400
    assert admin.post("/api/landing-content", json={"section": "Bad Section"}).status_code == 400


def test_landing_content_edit_requires_administrator(app):
    observer = _login(app, "3")
    assert observer.post("/api/landing-content", json={"section": "news"}).status_code == 403
    assert observer.put("/api/landing-content/1", json={"title": "x"}).status_code == 403
