from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.stablecrm.models import Base


class Horse(Base):
    __tablename__ = "horses"
    __table_args__ = (
        Index("idx_horses_nickname", "nickname"),
        Index("idx_horses_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    nickname: Mapped[str] = mapped_column(Text, nullable=False)
    breed: Mapped[str] = mapped_column(Text, nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active, rest, unavailable
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
