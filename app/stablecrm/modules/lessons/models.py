from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.stablecrm.models import Base

if TYPE_CHECKING:
    from app.stablecrm.modules.certificates.models import Certificate
    from app.stablecrm.modules.clients.models import Client
    from app.stablecrm.modules.horses.models import Horse
    from app.stablecrm.modules.instructors.models import Instructor
    from app.stablecrm.modules.subscriptions.models import Subscription


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        Index("idx_lessons_date", "date"),
        Index("idx_lessons_client_id", "client_id"),
        Index("idx_lessons_status", "status"),
        Index("idx_lessons_subscription_id", "subscription_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)

    date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=45)  # minutes
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_type: Mapped[str] = mapped_column(String(32), nullable=False)  # cash, subscription, certificate
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="planned")  # planned, completed, cancelled
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    certificate_id: Mapped[int | None] = mapped_column(ForeignKey("certificates.id"), nullable=True)
    subscription_id: Mapped[int | None] = mapped_column(ForeignKey("subscriptions.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    client: Mapped["Client"] = relationship("Client", lazy="selectin")
    certificate: Mapped["Certificate | None"] = relationship("Certificate", lazy="selectin")
    subscription: Mapped["Subscription | None"] = relationship("Subscription", lazy="selectin")

    instructor_links: Mapped[list["LessonInstructor"]] = relationship(
        "LessonInstructor",
        back_populates="lesson",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LessonInstructor.id",
    )
    horse_links: Mapped[list["LessonHorse"]] = relationship(
        "LessonHorse",
        back_populates="lesson",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LessonHorse.id",
    )


class LessonInstructor(Base):
    __tablename__ = "lesson_instructors"
    __table_args__ = (
        Index("idx_lesson_instructors_lesson_id", "lesson_id"),
        Index("idx_lesson_instructors_instructor_id", "instructor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lesson_id: Mapped[int] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False)
    instructor_id: Mapped[int] = mapped_column(ForeignKey("instructors.id"), nullable=False)

    lesson: Mapped[Lesson] = relationship("Lesson", back_populates="instructor_links")
    instructor: Mapped["Instructor"] = relationship("Instructor", lazy="selectin")


class LessonHorse(Base):
    __tablename__ = "lesson_horses"
    __table_args__ = (
        Index("idx_lesson_horses_lesson_id", "lesson_id"),
        Index("idx_lesson_horses_horse_id", "horse_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lesson_id: Mapped[int] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False)
    horse_id: Mapped[int] = mapped_column(ForeignKey("horses.id"), nullable=False)

    lesson: Mapped[Lesson] = relationship("Lesson", back_populates="horse_links")
    horse: Mapped["Horse"] = relationship("Horse", lazy="selectin")
