"""initial schema: users, audit, stable records, lessons, landing

Revision ID: a3f1c9d2e7b4
Revises:
Create Date: 2026-10-19 10:12:41.503118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = 'a3f1c9d2e7b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in insp.get_indexes(table))
        except Exception:
            return False

    def _index(name: str, table: str, cols: list[str]) -> None:
        if not _has_index(table, name):
            op.create_index(name, table, cols, unique=False)

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("vk_id", sa.String(length=64), nullable=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="observer"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("last_login_at", sa.DateTime(timezone=False), nullable=True),
            sa.UniqueConstraint("vk_id", name="uq_users_vk_id"),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_name", sa.Text(), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=128), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("reason", sa.String(length=512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(length=64), nullable=True),
        )
    _index("idx_audit_events_created_at", "audit_events", ["created_at"])
    _index("idx_audit_events_action", "audit_events", ["action"])

    if "horses" not in existing_tables:
        op.create_table(
            "horses",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("nickname", sa.Text(), nullable=False),
            sa.Column("breed", sa.Text(), nullable=False),
            sa.Column("age", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )
    _index("idx_horses_nickname", "horses", ["nickname"])
    _index("idx_horses_status", "horses", ["status"])

    if "instructors" not in existing_tables:
        op.create_table(
            "instructors",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("email", sa.Text(), nullable=True),
            sa.Column("specializations", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )
    _index("idx_instructors_name", "instructors", ["name"])

    if "clients" not in existing_tables:
        op.create_table(
            "clients",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("email", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )
    _index("idx_clients_name", "clients", ["name"])
    _index("idx_clients_created_at", "clients", ["created_at"])

    if "certificates" not in existing_tables:
        op.create_table(
            "certificates",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("number", sa.Text(), nullable=False),
            sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=True),
            sa.Column("value", sa.Numeric(10, 2), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
            sa.Column("expires_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("used_at", sa.DateTime(timezone=False), nullable=True),
            sa.UniqueConstraint("number", name="uq_certificates_number"),
        )
    _index("idx_certificates_status", "certificates", ["status"])
    _index("idx_certificates_client_id", "certificates", ["client_id"])

    if "subscriptions" not in existing_tables:
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
            sa.Column("total_lessons", sa.Integer(), nullable=False),
            sa.Column("lessons_remaining", sa.Integer(), nullable=False),
            sa.Column("duration_months", sa.Integer(), nullable=False, server_default="6"),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
            sa.Column("expires_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("used_at", sa.DateTime(timezone=False), nullable=True),
            sa.CheckConstraint("lessons_remaining >= 0", name="ck_subscriptions_remaining_non_negative"),
        )
    _index("idx_subscriptions_client_id", "subscriptions", ["client_id"])
    _index("idx_subscriptions_status", "subscriptions", ["status"])

    if "lessons" not in existing_tables:
        op.create_table(
            "lessons",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
            sa.Column("date", sa.DateTime(timezone=False), nullable=False),
            sa.Column("duration", sa.Integer(), nullable=False, server_default="45"),
            sa.Column("type", sa.String(length=64), nullable=False),
            sa.Column("payment_type", sa.String(length=32), nullable=False),
            sa.Column("cost", sa.Numeric(10, 2), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="planned"),
            sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("certificate_id", sa.Integer(), sa.ForeignKey("certificates.id"), nullable=True),
            sa.Column("subscription_id", sa.Integer(), sa.ForeignKey("subscriptions.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        )
    _index("idx_lessons_date", "lessons", ["date"])
    _index("idx_lessons_client_id", "lessons", ["client_id"])
    _index("idx_lessons_status", "lessons", ["status"])
    _index("idx_lessons_subscription_id", "lessons", ["subscription_id"])

    if "lesson_instructors" not in existing_tables:
        op.create_table(
            "lesson_instructors",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("lesson_id", sa.Integer(), sa.ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False),
            sa.Column("instructor_id", sa.Integer(), sa.ForeignKey("instructors.id"), nullable=False),
        )
    _index("idx_lesson_instructors_lesson_id", "lesson_instructors", ["lesson_id"])
    _index("idx_lesson_instructors_instructor_id", "lesson_instructors", ["instructor_id"])

    if "lesson_horses" not in existing_tables:
        op.create_table(
            "lesson_horses",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("lesson_id", sa.Integer(), sa.ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False),
            sa.Column("horse_id", sa.Integer(), sa.ForeignKey("horses.id"), nullable=False),
        )
    _index("idx_lesson_horses_lesson_id", "lesson_horses", ["lesson_id"])
    _index("idx_lesson_horses_horse_id", "lesson_horses", ["horse_id"])

    if "landing_content" not in existing_tables:
        op.create_table(
            "landing_content",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("section", sa.String(length=64), nullable=False),
            sa.Column("title", sa.Text(), nullable=True),
            sa.Column("content", sa.Text(), nullable=True),
            sa.Column("image_url", sa.Text(), nullable=True),
            sa.Column("is_visible", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
            sa.UniqueConstraint("section", name="uq_landing_content_section"),
        )


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "landing_content",
        "lesson_horses",
        "lesson_instructors",
        "lessons",
        "subscriptions",
        "certificates",
        "clients",
        "instructors",
        "horses",
        "audit_events",
        "users",
    ):
        op.drop_table(table)
