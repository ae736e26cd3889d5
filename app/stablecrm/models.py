from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    System user (staff or observer). Created on first VK login.
    Riding-school clients are NOT users; see modules.clients.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vk_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="observer")  # observer, instructor, administrator
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module tables do not reference it.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_created_at", "created_at"),
        Index("idx_audit_events_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "lesson.complete"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Horse"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.stablecrm.modules.horses.models import Horse  # noqa: E402,F401
from app.stablecrm.modules.instructors.models import Instructor  # noqa: E402,F401
from app.stablecrm.modules.clients.models import Client  # noqa: E402,F401
from app.stablecrm.modules.certificates.models import Certificate  # noqa: E402,F401
from app.stablecrm.modules.subscriptions.models import Subscription  # noqa: E402,F401
from app.stablecrm.modules.lessons.models import Lesson, LessonHorse, LessonInstructor  # noqa: E402,F401
from app.stablecrm.modules.landing.models import LandingContent  # noqa: E402,F401
