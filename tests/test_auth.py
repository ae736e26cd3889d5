"""Tests for VK login, session handling and role checks."""
from collections import defaultdict

import pytest

from app.stablecrm import auth, create_app
from app.stablecrm.db import session_scope
from app.stablecrm.models import AuditEvent, Base, User
from app.stablecrm.rbac import permissions_for_role, user_has_permission
from app.stablecrm.vk_client import VKClient, VKError, VKTokenInvalid, VKUser


def _fake_vk_user(self, access_token, *, email=None):
    if access_token == "vk-down":
        raise VKError("VK request failed: timed out")
    if not access_token.startswith("vk-"):
        raise VKTokenInvalid("VK rejected access token: invalid")
    return VKUser(id=access_token[3:], first_name="Анна", last_name="Иванова", email=email)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_VK_ID", "1")
    monkeypatch.setattr(auth, "_login_attempts", defaultdict(list))
    monkeypatch.setattr(VKClient, "get_current_user", _fake_vk_user)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add_all(
            [
                User(vk_id="2", name="Instructor", role="instructor", is_active=True),
                User(vk_id="3", name="Observer", role="observer", is_active=True),
                User(vk_id="4", name="Former", role="instructor", is_active=False),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, vk_id):
    r = client.post("/api/auth/vk", json={"accessToken": f"vk-{vk_id}"})
    assert r.status_code == 200, r.json
    client.environ_base["HTTP_X_CSRF_TOKEN"] = client.get("/api/auth/csrf").json["csrfToken"]
    return r.json


def test_first_login_creates_observer(app, client):
    r = client.post("/api/auth/vk", json={"accessToken": "vk-777", "email": "anna@example.com"})
    assert r.status_code == 200
    assert r.json["role"] == "observer"
    assert r.json["name"] == "Анна Иванова"
    assert r.json["email"] == "anna@example.com"

    with session_scope(app) as s:
        user = s.query(User).filter(User.vk_id == "777").one()
        assert user.last_login_at is not None
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id).all()]
    assert actions == ["user.create", "auth.login"]


def test_admin_vk_id_gets_administrator(client):
    user = _login(client, "1")
    assert user["role"] == "administrator"


def test_existing_user_keeps_role(client):
    assert _login(client, "2")["role"] == "instructor"


def test_missing_token_is_400(client):
    r = client.post("/api/auth/vk", json={})
    assert r.status_code == 400


def test_rejected_token_is_401(client):
    r = client.post("/api/auth/vk", json={"accessToken": "garbage"})
    assert r.status_code == 401
    assert r.json["error"] == "VK authentication failed"


def test_vk_transport_error_is_401(client):
    r = client.post("/api/auth/vk", json={"accessToken": "vk-down"})
    assert r.status_code == 401


def test_deactivated_user_is_403(client):
    r = client.post("/api/auth/vk", json={"accessToken": "vk-4"})
    assert r.status_code == 403
    r = client.get("/api/auth/me")
    assert r.status_code == 401


def test_rate_limit(client):
    for _ in range(10):
        assert client.post("/api/auth/vk", json={"accessToken": "garbage"}).status_code == 401
    r = client.post("/api/auth/vk", json={"accessToken": "vk-3"})
    assert r.status_code == 429


def test_me_and_logout(client):
    assert client.get("/api/auth/me").status_code == 401

    _login(client, "3")
    r = client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json["role"] == "observer"
    assert "horses.view" in r.json["permissions"]
    assert "horses.create" not in r.json["permissions"]

    r = client.post("/api/auth/logout")
    assert r.json == {"success": True}
    assert client.get("/api/auth/me").status_code == 401


def test_observer_is_read_only(client):
    _login(client, "3")
    assert client.get("/api/horses").status_code == 200
    r = client.post("/api/horses", json={"nickname": "Гром", "breed": "Тракен", "age": 5})
    assert r.status_code == 403
    assert r.json["error"] == "Insufficient permissions"


def test_instructor_cannot_delete_horse_or_manage_users(client):
    _login(client, "2")
    r = client.post("/api/horses", json={"nickname": "Гром", "breed": "Тракен", "age": 5})
    assert r.status_code == 201
    assert client.delete(f"/api/horses/{r.json['id']}").status_code == 403
    assert client.get("/api/users").status_code == 403
    assert client.post("/api/instructors", json={"name": "Мария"}).status_code == 403


def test_role_permission_table():
    assert permissions_for_role("observer") < permissions_for_role("instructor") < permissions_for_role("administrator")
    assert permissions_for_role("nobody") == frozenset()
    inactive_admin = User(name="x", role="administrator", is_active=False)
    assert not user_has_permission(inactive_admin, "horses.view")
    assert not user_has_permission(None, "horses.view")
