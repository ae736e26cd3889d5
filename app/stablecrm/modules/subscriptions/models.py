from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.stablecrm.models import Base

if TYPE_CHECKING:
    from app.stablecrm.modules.clients.models import Client


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("idx_subscriptions_client_id", "client_id"),
        Index("idx_subscriptions_status", "status"),
        CheckConstraint("lessons_remaining >= 0", name="ck_subscriptions_remaining_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)

    total_lessons: Mapped[int] = mapped_column(Integer, nullable=False)
    lessons_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_months: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active, expired, used
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    client: Mapped["Client"] = relationship("Client", lazy="selectin")
