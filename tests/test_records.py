"""Tests for clients, instructors, certificates and subscriptions."""
from collections import defaultdict
from datetime import datetime

import pytest

from app.stablecrm import auth, create_app
from app.stablecrm.db import session_scope
from app.stablecrm.models import Base, User
from app.stablecrm.modules.subscriptions.models import Subscription
from app.stablecrm.utils import add_months
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
        s.add(User(vk_id="1", name="Admin", role="administrator", is_active=True))
    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    c.post("/api/auth/vk", json={"accessToken": "vk-1"})
    c.environ_base["HTTP_X_CSRF_TOKEN"] = c.get("/api/auth/csrf").json["csrfToken"]
    return c


def _make(client, url, payload):
    r = client.post(url, json=payload)
    assert r.status_code == 201, r.json
    return r.json


def test_client_search_and_ordering(client):
    _make(client, "/api/clients", {"name": "Ольга Смирнова", "phone": "+7 999 111-22-33"})
    _make(client, "/api/clients", {"name": "Peter Brown", "email": "peter@example.com"})

    assert [c["name"] for c in client.get("/api/clients").json] == ["Peter Brown", "Ольга Смирнова"]
    assert [c["name"] for c in client.get("/api/clients?search=PETER").json] == ["Peter Brown"]
    assert [c["name"] for c in client.get("/api/clients?search=111").json] == ["Ольга Смирнова"]
    assert client.get("/api/clients?search=nobody").json == []


def test_client_validation_and_update(client):
    r = client.post("/api/clients", json={"name": "Анна", "email": "not-an-email"})
    assert r.status_code == 400

    c = _make(client, "/api/clients", {"name": "Анна"})
    r = client.put(f"/api/clients/{c['id']}", json={"phone": "+79990000000", "notes": "боится лошадей"})
    assert r.status_code == 200
    assert r.json["phone"] == "+79990000000"
    assert r.json["name"] == "Анна"


def test_client_delete_refused_while_referenced(client):
    c = _make(client, "/api/clients", {"name": "Анна"})
    sub = _make(client, "/api/subscriptions", {"clientId": c["id"], "totalLessons": 4})

    r = client.delete(f"/api/clients/{c['id']}")
    assert r.status_code == 400
    assert "subscriptions" in r.json["error"]

    assert [s["id"] for s in client.get(f"/api/clients/{c['id']}/subscriptions").json] == [sub["id"]]

    other = _make(client, "/api/clients", {"name": "Борис"})
    assert client.delete(f"/api/clients/{other['id']}").status_code == 204
    assert client.get(f"/api/clients/{other['id']}").status_code == 404


def test_instructor_active_filter_and_delete(client):
    maria = _make(client, "/api/instructors", {"name": "Мария", "specializations": ["hippotherapy", "walk"]})
    ivan = _make(client, "/api/instructors", {"name": "Иван", "specializations": "walk, walk"})
    assert ivan["specializations"] == ["walk"]

    client.put(f"/api/instructors/{ivan['id']}", json={"isActive": False})
    assert [i["name"] for i in client.get("/api/instructors?active=true").json] == ["Мария"]
    assert [i["name"] for i in client.get("/api/instructors").json] == ["Иван", "Мария"]

    horse = _make(client, "/api/horses", {"nickname": "Буран", "breed": "X", "age": 5})
    owner = _make(client, "/api/clients", {"name": "Анна"})
    _make(
        client,
        "/api/lessons",
        {
            "clientId": owner["id"],
            "date": "2026-04-01T10:00:00",
            "type": "hippotherapy",
            "paymentType": "cash",
            "instructorIds": [maria["id"]],
            "horseIds": [horse["id"]],
        },
    )

    # Referenced by a lesson: deactivated, not deleted.
    assert client.delete(f"/api/instructors/{maria['id']}").status_code == 204
    assert client.get(f"/api/instructors/{maria['id']}").json["isActive"] is False

    assert client.delete(f"/api/instructors/{ivan['id']}").status_code == 204
    assert client.get(f"/api/instructors/{ivan['id']}").status_code == 404


def test_certificate_lifecycle(client):
    cert = _make(client, "/api/certificates", {"number": "GC-100", "value": 5000})
    assert cert["value"] == "5000.00"
    assert cert["status"] == "active"
    assert cert["clientId"] is None

    r = client.post("/api/certificates", json={"number": "GC-100", "value": 100})
    assert r.status_code == 400
    assert "already exists" in r.json["error"]

    r = client.post("/api/certificates", json={"number": "GC-101", "value": 0})
    assert r.status_code == 400

    r = client.put(f"/api/certificates/{cert['id']}", json={"status": "used"})
    assert r.json["usedAt"] is not None

    assert [c["number"] for c in client.get("/api/certificates?status=used").json] == ["GC-100"]
    assert client.delete(f"/api/certificates/{cert['id']}").status_code == 204


def test_subscription_defaults(client):
    c = _make(client, "/api/clients", {"name": "Анна"})
    before = datetime.utcnow()
    sub = _make(client, "/api/subscriptions", {"clientId": c["id"], "totalLessons": 8})

    assert sub["lessonsRemaining"] == 8
    assert sub["durationMonths"] == 6
    assert sub["status"] == "active"
    assert sub["client"]["name"] == "Анна"
    expires = datetime.fromisoformat(sub["expiresAt"])
    assert add_months(before, 6).date() <= expires.date() <= add_months(datetime.utcnow(), 6).date()


def test_subscription_validation(client):
    c = _make(client, "/api/clients", {"name": "Анна"})
    r = client.post("/api/subscriptions", json={"clientId": c["id"], "totalLessons": 4, "lessonsRemaining": 5})
    assert r.status_code == 400
    r = client.post("/api/subscriptions", json={"clientId": 999, "totalLessons": 4})
    assert r.status_code == 400
    assert r.json["error"] == "Client not found."
    r = client.post("/api/subscriptions", json={"clientId": c["id"], "totalLessons": 0})
    assert r.status_code == 400


def test_expire_overdue_subscriptions(app, client):
    c = _make(client, "/api/clients", {"name": "Анна"})
    old = _make(client, "/api/subscriptions", {"clientId": c["id"], "totalLessons": 4, "expiresAt": "2020-01-01"})
    fresh = _make(client, "/api/subscriptions", {"clientId": c["id"], "totalLessons": 4})

    r = client.post("/api/admin/maintenance/expire-subscriptions")
    assert r.status_code == 200
    assert r.json == {"expired": 1}

    with session_scope(app) as s:
        assert s.get(Subscription, old["id"]).status == "expired"
        assert s.get(Subscription, fresh["id"]).status == "active"
    assert [x["id"] for x in client.get("/api/subscriptions?status=expired").json] == [old["id"]]


def test_add_months_clamps_day():
    assert add_months(datetime(2026, 1, 31, 12, 0), 1) == datetime(2026, 2, 28, 12, 0)
    assert add_months(datetime(2026, 8, 31), 6) == datetime(2027, 2, 28)
    assert add_months(datetime(2026, 11, 15), 2) == datetime(2027, 1, 15)


def test_subscription_edited_to_zero_remaining_becomes_used(client):
    c = _make(client, "/api/clients", {"name": "Анна"})
    sub = _make(client, "/api/subscriptions", {"clientId": c["id"], "totalLessons": 4})

    r = client.put(f"/api/subscriptions/{sub['id']}", json={"lessonsRemaining": 0})
    assert r.status_code == 200
    assert r.json["lessonsRemaining"] == 0
    assert r.json["status"] == "used"
    assert r.json["usedAt"] is not None
