"""
Deploy-time steps for the stable CRM, run before the web workers start.

1. migrate: bring the schema to the Alembic head.
2. seed: make sure the ADMIN_VK_ID account is an active administrator and
   every default landing section exists.
3. expire (optional): flip subscriptions whose expiry date has passed to
   "expired", so the dashboard counts are right after a long downtime.

Usage:
  python scripts/release.py
  python scripts/release.py --skip-seed
  python scripts/release.py --expire-subscriptions
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url(explicit: str | None) -> str:
    db_url = (explicit or os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is not set; refusing to migrate an implicit SQLite file.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Production release needs a Postgres DATABASE_URL, got sqlite.")
    return db_url


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def expire_subscriptions(db_url: str) -> int:
    from app.stablecrm.audit import record_event
    from app.stablecrm.modules.subscriptions.service import expire_overdue_subscriptions
    from scripts._db_utils import script_session

    with script_session(db_url) as s:
        expired = expire_overdue_subscriptions(s)
        if expired:
            record_event(
                s,
                actor=None,
                action="maintenance.expire_subscriptions",
                entity_type="Subscription",
                reason="release",
                metadata={"expired": expired},
            )
    return expired


def run_release(database_url: str | None = None, *, seed: bool = True, expire: bool = False) -> dict:
    """Run the release steps in order. Returns what each step did."""
    db_url = _database_url(database_url)
    summary: dict = {"migrated": False, "seeded": False, "expired": None}

    print("[release] migrating schema to head", flush=True)
    migrate(db_url)
    summary["migrated"] = True

    if seed:
        from scripts import init_db

        print("[release] seeding administrator and landing sections", flush=True)
        init_db.seed_only(database_url=db_url)
        summary["seeded"] = True

    if expire:
        summary["expired"] = expire_subscriptions(db_url)
        print(f"[release] expired {summary['expired']} overdue subscription(s)", flush=True)

    print("[release] done", flush=True)
    return summary


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Migrate and seed the stable CRM database.")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    parser.add_argument("--skip-seed", action="store_true", help="Only run migrations")
    parser.add_argument(
        "--expire-subscriptions",
        action="store_true",
        help="Mark active subscriptions past their expiry date as expired",
    )
    args = parser.parse_args(argv)
    run_release(args.database_url, seed=not args.skip_seed, expire=args.expire_subscriptions)


if __name__ == "__main__":
    main()
