from datetime import datetime

import pytest

from app.stablecrm.models import AuditEvent, Base, User
from app.stablecrm.modules.clients.models import Client
from app.stablecrm.modules.landing.models import LandingContent
from app.stablecrm.modules.subscriptions.models import Subscription
from scripts import init_db
from scripts._db_utils import create_script_engine, script_session
from scripts.release import run_release
from scripts.start import gunicorn_command


def _db_url(tmp_path):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_script_engine(url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    return url


def test_seed_creates_admin_and_landing_sections(tmp_path, monkeypatch):
    url = _db_url(tmp_path)
    monkeypatch.setenv("ADMIN_VK_ID", "777")
    monkeypatch.setenv("ADMIN_NAME", "Директор")

    init_db.seed_only(database_url=url)

    with script_session(url) as s:
        admin = s.query(User).filter(User.vk_id == "777").one()
        assert admin.role == "administrator"
        assert admin.name == "Директор"
        sections = {row.section: row.title for row in s.query(LandingContent).all()}
    assert set(sections) == {"hero", "about", "services", "prices", "contacts"}
    assert sections["prices"] == "Цены"


def test_seed_is_idempotent_and_restores_admin_role(tmp_path, monkeypatch):
    url = _db_url(tmp_path)
    monkeypatch.setenv("ADMIN_VK_ID", "777")
    init_db.seed_only(database_url=url)

    with script_session(url) as s:
        admin = s.query(User).filter(User.vk_id == "777").one()
        admin.role = "observer"
        admin.is_active = False
        s.query(LandingContent).filter(LandingContent.section == "hero").one().title = "Своё"

    init_db.seed_only(database_url=url)

    with script_session(url) as s:
        assert s.query(User).count() == 1
        admin = s.query(User).one()
        assert admin.role == "administrator"
        assert admin.is_active is True
        assert s.query(LandingContent).count() == 5
        assert s.query(LandingContent).filter(LandingContent.section == "hero").one().title == "Своё"


def test_seed_without_admin_id_only_adds_landing(tmp_path, monkeypatch):
    url = _db_url(tmp_path)
    monkeypatch.delenv("ADMIN_VK_ID", raising=False)
    init_db.seed_only(database_url=url)

    with script_session(url) as s:
        assert s.query(User).count() == 0
        assert s.query(LandingContent).count() == 5


def test_release_migrates_seeds_and_expires(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_VK_ID", "777")

    summary = run_release(url)
    assert summary == {"migrated": True, "seeded": True, "expired": None}

    with script_session(url) as s:
        assert s.query(User).filter(User.vk_id == "777").one().role == "administrator"
        client = Client(name="Анна")
        s.add(client)
        s.flush()
        s.add(Subscription(client_id=client.id, total_lessons=4, lessons_remaining=4, expires_at=datetime(2020, 1, 1)))

    # Running again is safe and can expire overdue subscriptions.
    summary = run_release(url, seed=False, expire=True)
    assert summary == {"migrated": True, "seeded": False, "expired": 1}

    with script_session(url) as s:
        assert s.query(Subscription).one().status == "expired"
        assert s.query(AuditEvent).filter(AuditEvent.action == "maintenance.expire_subscriptions").count() == 1


def test_release_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        run_release()


def test_gunicorn_command():
    cmd = gunicorn_command(9000, 3, 45)
    assert cmd[:2] == ["gunicorn", "app.wsgi:app"]
    assert cmd[cmd.index("--bind") + 1] == "0.0.0.0:9000"
    assert cmd[cmd.index("--workers") + 1] == "3"
    assert cmd[cmd.index("--timeout") + 1] == "45"
