import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.stablecrm.constants import DEFAULT_LANDING_SECTIONS, ROLE_ADMINISTRATOR, STABLE_NAME
from app.stablecrm.models import User
from app.stablecrm.modules.landing.models import LandingContent
from scripts._db_utils import script_session

_LANDING_TITLES = {
    "hero": STABLE_NAME,
    "about": "О нас",
    "services": "Услуги",
    "prices": "Цены",
    "contacts": "Контакты",
}


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the administrator account and the default landing sections.
    Idempotent: existing rows are left as they are, except that the
    ADMIN_VK_ID user is (re)granted the administrator role.
    """
    admin_vk_id = (os.environ.get("ADMIN_VK_ID") or "").strip()
    admin_name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///stablecrm.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        if admin_vk_id:
            user = s.query(User).filter(User.vk_id == admin_vk_id).one_or_none()
            if not user:
                user = User(vk_id=admin_vk_id, name=admin_name, role=ROLE_ADMINISTRATOR, is_active=True)
                s.add(user)
            user.role = ROLE_ADMINISTRATOR
            user.is_active = True

        existing = {row.section for row in s.query(LandingContent).all()}
        for section in DEFAULT_LANDING_SECTIONS:
            if section not in existing:
                s.add(LandingContent(section=section, title=_LANDING_TITLES.get(section), is_visible=True))

    print("Initialized database (seed_only).")
    if admin_vk_id:
        print(f"Administrator VK id: {admin_vk_id}")
    else:
        print("ADMIN_VK_ID not set; no administrator seeded.")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
