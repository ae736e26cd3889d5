"""Tests for lessons: creation rules, completion with subscription deduction, certificates."""
from collections import defaultdict
from datetime import datetime, timedelta

import pytest

from app.stablecrm import auth, create_app
from app.stablecrm.db import session_scope
from app.stablecrm.models import AuditEvent, Base, User
from app.stablecrm.modules.clients.models import Client
from app.stablecrm.modules.horses.models import Horse
from app.stablecrm.modules.instructors.models import Instructor
from app.stablecrm.modules.subscriptions.models import Subscription
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
        s.add(User(vk_id="2", name="Instructor", role="instructor", is_active=True))
        s.add_all(
            [
                Client(name="Ольга", phone="+79990001122"),
                Client(name="Пётр"),
                Instructor(name="Мария", specializations=["walk"]),
                Instructor(name="Иван"),
                Horse(nickname="Буран", breed="Орловский", age=9),
                Horse(nickname="Звезда", breed="Тракен", age=6),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    c.post("/api/auth/vk", json={"accessToken": "vk-2"})
    c.environ_base["HTTP_X_CSRF_TOKEN"] = c.get("/api/auth/csrf").json["csrfToken"]
    return c


def _lesson_payload(**overrides):
    payload = {
        "clientId": 1,
        "date": "2026-05-12T07:00:00.000Z",
        "type": "beginner_riding",
        "paymentType": "cash",
        "instructorIds": [1],
        "horseIds": [1],
    }
    payload.update(overrides)
    return payload


def _subscription(client, client_id=1, total=3, **extra):
    r = client.post("/api/subscriptions", json={"clientId": client_id, "totalLessons": total, **extra})
    assert r.status_code == 201, r.json
    return r.json


def test_create_lesson_defaults(client):
    r = client.post("/api/lessons", json=_lesson_payload(instructorIds=[1, 2], horseIds=[2]))
    assert r.status_code == 201, r.json
    lesson = r.json
    assert lesson["status"] == "planned"
    assert lesson["duration"] == 45
    assert lesson["cost"] == "1500.00"
    assert lesson["isPaid"] is False
    assert lesson["date"] == "2026-05-12T07:00:00"
    assert lesson["typeLabel"] == "Верховая езда новичок"
    assert lesson["instructorIds"] == [1, 2]
    assert [lh["horse"]["nickname"] for lh in lesson["lessonHorses"]] == ["Звезда"]
    assert lesson["client"]["name"] == "Ольга"


def test_create_lesson_validation(client):
    r = client.post("/api/lessons", json=_lesson_payload(instructorIds=[], horseIds=[], type="polo"))
    assert r.status_code == 400
    assert len(r.json["details"]) == 3

    r = client.post("/api/lessons", json=_lesson_payload(horseIds=[99]))
    assert r.status_code == 400
    assert "Horse not found" in r.json["error"]

    r = client.post("/api/lessons", json=_lesson_payload(clientId=42))
    assert r.status_code == 400
    assert r.json["error"] == "Client not found."


def test_subscription_must_belong_to_client(client):
    sub = _subscription(client, client_id=2)
    r = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription", subscriptionId=sub["id"]))
    assert r.status_code == 400
    assert "another client" in r.json["error"]


def test_subscription_lesson_links_active_subscription(client):
    sub = _subscription(client)
    r = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription"))
    assert r.status_code == 201
    assert r.json["subscriptionId"] == sub["id"]
    assert r.json["cost"] == "1250.00"


def test_completion_deducts_one_lesson(app, client):
    sub = _subscription(client, total=2)
    lesson = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription")).json

    r = client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed"})
    assert r.status_code == 200, r.json
    assert r.json["status"] == "completed"
    assert r.json["cost"] == lesson["cost"]

    sub_after = client.get(f"/api/subscriptions/{sub['id']}").json
    assert sub_after["lessonsRemaining"] == 1
    assert sub_after["status"] == "active"

    # Saving an already completed lesson again does not deduct twice.
    client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed", "notes": "повтор"})
    assert client.get(f"/api/subscriptions/{sub['id']}").json["lessonsRemaining"] == 1

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "subscription.deduct").count() == 1
        assert s.query(AuditEvent).filter(AuditEvent.action == "lesson.complete").count() == 1


def test_last_lesson_marks_subscription_used(client):
    sub = _subscription(client, total=1)
    lesson = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription")).json
    client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed"})

    sub_after = client.get(f"/api/subscriptions/{sub['id']}").json
    assert sub_after["lessonsRemaining"] == 0
    assert sub_after["status"] == "used"
    assert sub_after["usedAt"] is not None


def test_exhausted_subscription_falls_back_to_newest_active(app, client):
    first = _subscription(client, total=1)
    lesson_a = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription")).json
    lesson_b = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription")).json
    assert lesson_b["subscriptionId"] == first["id"]

    client.put(f"/api/lessons/{lesson_a['id']}", json={"status": "completed"})
    second = _subscription(client, total=5)

    r = client.put(f"/api/lessons/{lesson_b['id']}", json={"status": "completed"})
    assert r.json["subscriptionId"] == second["id"]

    with session_scope(app) as s:
        assert s.get(Subscription, first["id"]).lessons_remaining == 0
        assert s.get(Subscription, second["id"]).lessons_remaining == 4


def test_completion_without_usable_subscription_never_goes_negative(app, client):
    sub = _subscription(client, total=1)
    lessons = [client.post("/api/lessons", json=_lesson_payload(paymentType="subscription")).json for _ in range(2)]
    for lesson in lessons:
        r = client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed"})
        assert r.status_code == 200

    with session_scope(app) as s:
        assert s.get(Subscription, sub["id"]).lessons_remaining == 0


def test_expired_subscription_is_not_used(app, client):
    past = (datetime.utcnow() - timedelta(days=1)).isoformat()
    sub = _subscription(client, total=4, expiresAt=past)
    lesson = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription")).json
    assert lesson["subscriptionId"] is None

    client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed"})
    with session_scope(app) as s:
        assert s.get(Subscription, sub["id"]).lessons_remaining == 4


def test_completion_switching_payment_type_to_subscription(client):
    sub = _subscription(client, total=3)
    lesson = client.post("/api/lessons", json=_lesson_payload()).json
    r = client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed", "paymentType": "subscription"})
    assert r.json["paymentType"] == "subscription"
    assert r.json["subscriptionId"] == sub["id"]
    assert client.get(f"/api/subscriptions/{sub['id']}").json["lessonsRemaining"] == 2


def test_cash_lesson_completion_leaves_subscription_alone(client):
    sub = _subscription(client, total=3)
    lesson = client.post("/api/lessons", json=_lesson_payload(paymentType="cash")).json
    client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed"})
    assert client.get(f"/api/subscriptions/{sub['id']}").json["lessonsRemaining"] == 3


def test_created_completed_lesson_is_settled(client):
    sub = _subscription(client, total=3)
    r = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription", status="completed"))
    assert r.status_code == 201
    assert client.get(f"/api/subscriptions/{sub['id']}").json["lessonsRemaining"] == 2


def test_certificate_redeemed_on_completion(client):
    cert = client.post("/api/certificates", json={"number": "GC-001", "value": "3000", "clientId": 1}).json
    lesson = client.post(
        "/api/lessons", json=_lesson_payload(paymentType="certificate", certificateId=cert["id"])
    ).json
    assert lesson["certificate"]["number"] == "GC-001"

    client.put(f"/api/lessons/{lesson['id']}", json={"status": "completed"})
    cert_after = client.get(f"/api/certificates/{cert['id']}").json
    assert cert_after["status"] == "used"
    assert cert_after["usedAt"] is not None


def test_update_replaces_instructors_and_horses(client):
    lesson = client.post("/api/lessons", json=_lesson_payload(instructorIds=[1], horseIds=[1])).json
    r = client.put(f"/api/lessons/{lesson['id']}", json={"instructorIds": [2], "horseIds": [1, 2]})
    assert r.status_code == 200
    assert r.json["instructorIds"] == [2]
    assert r.json["horseIds"] == [1, 2]

    r = client.put(f"/api/lessons/{lesson['id']}", json={"horseIds": []})
    assert r.status_code == 400


def test_list_filters_and_delete(client):
    client.post("/api/lessons", json=_lesson_payload(date="2026-05-10T09:00:00"))
    late = client.post("/api/lessons", json=_lesson_payload(date="2026-05-20T18:30:00", clientId=2)).json

    r = client.get("/api/lessons?startDate=2026-05-15&endDate=2026-05-20")
    assert [item["id"] for item in r.json] == [late["id"]]

    r = client.get("/api/lessons?clientId=2")
    assert [item["id"] for item in r.json] == [late["id"]]
    assert len(client.get("/api/clients/2/lessons").json) == 1

    assert client.get("/api/lessons?startDate=someday").status_code == 400

    assert client.delete(f"/api/lessons/{late['id']}").status_code == 204
    assert client.get(f"/api/lessons/{late['id']}").status_code == 404
    assert late["id"] not in [item["id"] for item in client.get("/api/lessons").json]


def test_changing_client_moves_subscription_to_new_client(client):
    first = _subscription(client, client_id=1, total=3)
    second = _subscription(client, client_id=2, total=3)
    lesson = client.post("/api/lessons", json=_lesson_payload(paymentType="subscription")).json
    assert lesson["subscriptionId"] == first["id"]

    r = client.put(f"/api/lessons/{lesson['id']}", json={"clientId": 2, "status": "completed"})
    assert r.status_code == 200, r.json
    assert r.json["clientId"] == 2
    assert r.json["subscriptionId"] == second["id"]

    assert client.get(f"/api/subscriptions/{first['id']}").json["lessonsRemaining"] == 3
    assert client.get(f"/api/subscriptions/{second['id']}").json["lessonsRemaining"] == 2


def test_changing_client_drops_other_clients_certificate(client):
    cert = client.post("/api/certificates", json={"number": "GC-002", "value": "3000", "clientId": 1}).json
    lesson = client.post(
        "/api/lessons", json=_lesson_payload(paymentType="certificate", certificateId=cert["id"])
    ).json

    r = client.put(f"/api/lessons/{lesson['id']}", json={"clientId": 2, "status": "completed"})
    assert r.status_code == 200, r.json
    assert r.json["certificateId"] is None
    assert client.get(f"/api/certificates/{cert['id']}").json["status"] == "active"
