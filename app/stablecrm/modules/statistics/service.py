from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import and_, func, select

from app.stablecrm.modules.certificates.models import Certificate
from app.stablecrm.modules.clients.models import Client
from app.stablecrm.modules.horses.models import Horse
from app.stablecrm.modules.instructors.models import Instructor
from app.stablecrm.modules.lessons.models import Lesson, LessonHorse, LessonInstructor
from app.stablecrm.modules.subscriptions.models import Subscription
from app.stablecrm.utils import day_bounds, money, month_bounds, month_start

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def _completed_in_range(start: datetime, end: datetime):
    return and_(Lesson.status == "completed", Lesson.date >= start, Lesson.date <= end)


def _hours(total_minutes) -> float:
    return round(float(total_minutes or 0) / 60.0, 2)


def horse_workload(s: "Session", start: datetime, end: datetime) -> list[dict]:
    """
    Every horse with the hours and count of completed lessons in [start, end].
    Horses without lessons are included with zeros.
    """
    stmt = (
        select(
            Horse.id,
            Horse.nickname,
            func.coalesce(func.sum(Lesson.duration), 0),
            func.count(Lesson.id),
        )
        .select_from(Horse)
        .outerjoin(LessonHorse, LessonHorse.horse_id == Horse.id)
        .outerjoin(Lesson, and_(LessonHorse.lesson_id == Lesson.id, _completed_in_range(start, end)))
        .group_by(Horse.id, Horse.nickname)
        .order_by(Horse.nickname.asc(), Horse.id.asc())
    )
    return [
        {"horseId": horse_id, "horseName": nickname, "totalHours": _hours(minutes), "totalLessons": int(lessons or 0)}
        for horse_id, nickname, minutes, lessons in s.execute(stmt).all()
    ]


def instructor_workload(s: "Session", start: datetime, end: datetime) -> list[dict]:
    stmt = (
        select(
            Instructor.id,
            Instructor.name,
            func.coalesce(func.sum(Lesson.duration), 0),
            func.count(Lesson.id),
        )
        .select_from(Instructor)
        .outerjoin(LessonInstructor, LessonInstructor.instructor_id == Instructor.id)
        .outerjoin(Lesson, and_(LessonInstructor.lesson_id == Lesson.id, _completed_in_range(start, end)))
        .group_by(Instructor.id, Instructor.name)
        .order_by(Instructor.name.asc(), Instructor.id.asc())
    )
    return [
        {
            "instructorId": instructor_id,
            "instructorName": name,
            "totalHours": _hours(minutes),
            "totalLessons": int(lessons or 0),
        }
        for instructor_id, name, minutes, lessons in s.execute(stmt).all()
    ]


def revenue_between(s: "Session", start: datetime, end: datetime) -> Decimal:
    total = s.execute(
        select(func.coalesce(func.sum(Lesson.cost), 0)).where(_completed_in_range(start, end))
    ).scalar_one()
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def monthly_revenue(s: "Session", year: int, month: int) -> Decimal:
    """Sum of completed lesson costs in a calendar month."""
    start, end = month_bounds(year, month)
    return revenue_between(s, start, end)


def new_clients_count(s: "Session", year: int, month: int) -> int:
    start, end = month_bounds(year, month)
    return int(
        s.execute(
            select(func.count(Client.id)).where(Client.created_at >= start, Client.created_at <= end)
        ).scalar_one()
    )


def dashboard_summary(s: "Session", now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    today_start, tomorrow_start = day_bounds(now.date())

    today_lessons = s.execute(
        select(func.count(Lesson.id)).where(Lesson.date >= today_start, Lesson.date < tomorrow_start)
    ).scalar_one()
    planned_today = s.execute(
        select(func.count(Lesson.id)).where(
            Lesson.date >= today_start, Lesson.date < tomorrow_start, Lesson.status == "planned"
        )
    ).scalar_one()
    active_subscriptions = s.execute(
        select(func.count(Subscription.id)).where(
            Subscription.status == "active",
            Subscription.lessons_remaining > 0,
            (Subscription.expires_at.is_(None)) | (Subscription.expires_at > now),
        )
    ).scalar_one()
    active_certificates = s.execute(
        select(func.count(Certificate.id)).where(
            Certificate.status == "active",
            (Certificate.expires_at.is_(None)) | (Certificate.expires_at > now),
        )
    ).scalar_one()
    active_horses = s.execute(select(func.count(Horse.id)).where(Horse.status == "active")).scalar_one()
    clients_total = s.execute(select(func.count(Client.id))).scalar_one()

    return {
        "todayLessons": int(today_lessons),
        "plannedToday": int(planned_today),
        "activeSubscriptions": int(active_subscriptions),
        "activeCertificates": int(active_certificates),
        "activeHorses": int(active_horses),
        "totalClients": int(clients_total),
        "monthRevenue": money(revenue_between(s, month_start(now), now)),
        "newClientsThisMonth": new_clients_count(s, now.year, now.month),
    }
