from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.stablecrm.models import Base

if TYPE_CHECKING:
    from app.stablecrm.modules.clients.models import Client


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (
        Index("idx_certificates_status", "status"),
        Index("idx_certificates_client_id", "client_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id"), nullable=True)
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active, used, expired
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    client: Mapped["Client | None"] = relationship("Client", lazy="selectin")
