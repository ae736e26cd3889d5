"""Tests for Horses module."""
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

import pytest

from app.stablecrm import auth, create_app
from app.stablecrm.constants import DELETED_HORSE_MARKER
from app.stablecrm.db import session_scope
from app.stablecrm.models import AuditEvent, Base, User
from app.stablecrm.modules.clients.models import Client
from app.stablecrm.modules.horses.models import Horse
from app.stablecrm.modules.instructors.models import Instructor
from app.stablecrm.modules.lessons.models import Lesson, LessonHorse, LessonInstructor
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


def _seed_horse_with_lessons(app, *statuses):
    """Horse assigned to one lesson per given status. Returns (horse_id, lesson_ids)."""
    with session_scope(app) as s:
        client = Client(name="Ольга")
        instructor = Instructor(name="Мария")
        horse = Horse(nickname="Буран", breed="Орловский", age=9)
        s.add_all([client, instructor, horse])
        s.flush()
        lesson_ids = []
        for i, status in enumerate(statuses):
            lesson = Lesson(
                client_id=client.id,
                date=datetime(2026, 3, 1 + i, 10, 0),
                type="walk",
                payment_type="cash",
                cost=Decimal("1500.00"),
                status=status,
            )
            lesson.instructor_links = [LessonInstructor(instructor_id=instructor.id)]
            lesson.horse_links = [LessonHorse(horse_id=horse.id)]
            s.add(lesson)
            s.flush()
            lesson_ids.append(lesson.id)
        return horse.id, lesson_ids


def test_horse_crud(client):
    r = client.post("/api/horses", json={"nickname": "Звезда", "breed": "Ахалтекинская", "age": 6, "notes": "спокойная"})
    assert r.status_code == 201
    horse_id = r.json["id"]
    assert r.json["status"] == "active"

    r = client.put(f"/api/horses/{horse_id}", json={"status": "rest"})
    assert r.status_code == 200
    assert r.json["status"] == "rest"
    assert r.json["nickname"] == "Звезда"

    r = client.get("/api/horses?status=rest")
    assert [h["id"] for h in r.json] == [horse_id]
    assert client.get("/api/horses?status=active").json == []

    assert client.get(f"/api/horses/{horse_id}").json["notes"] == "спокойная"
    assert client.get("/api/horses/999").status_code == 404


def test_horse_validation(client):
    r = client.post("/api/horses", json={"nickname": "", "breed": "X", "age": -1, "status": "sleeping"})
    assert r.status_code == 400
    assert len(r.json["details"]) == 3


def test_horses_ordered_by_nickname(client):
    for name in ("Янтарь", "Арго", "Метель"):
        client.post("/api/horses", json={"nickname": name, "breed": "X", "age": 4})
    assert [h["nickname"] for h in client.get("/api/horses").json] == ["Арго", "Метель", "Янтарь"]


def test_delete_unused_horse_removes_it(app, client):
    horse_id, _ = _seed_horse_with_lessons(app, "planned", "cancelled")
    r = client.delete(f"/api/horses/{horse_id}")
    assert r.status_code == 204

    with session_scope(app) as s:
        assert s.get(Horse, horse_id) is None
        assert s.query(LessonHorse).count() == 0
        assert s.query(AuditEvent).filter(AuditEvent.action == "horse.delete").count() == 1


def test_delete_horse_with_completed_lesson_archives_it(app, client):
    horse_id, (completed_id, planned_id) = _seed_horse_with_lessons(app, "completed", "planned")

    r = client.delete(f"/api/horses/{horse_id}")
    assert r.status_code == 204

    with session_scope(app) as s:
        horse = s.get(Horse, horse_id)
        assert horse.nickname == f"{DELETED_HORSE_MARKER}Буран"
        assert horse.status == "unavailable"
        links = s.query(LessonHorse).filter(LessonHorse.horse_id == horse_id).all()
        assert [link.lesson_id for link in links] == [completed_id]

    # Deleting again does not stack the marker.
    client.delete(f"/api/horses/{horse_id}")
    assert client.get(f"/api/horses/{horse_id}").json["nickname"] == f"{DELETED_HORSE_MARKER}Буран"
