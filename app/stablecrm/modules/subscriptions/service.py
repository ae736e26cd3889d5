from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.stablecrm.audit import record_event
from app.stablecrm.constants import DEFAULT_SUBSCRIPTION_MONTHS, SUBSCRIPTION_STATUSES
from app.stablecrm.utils import add_months, iso, parse_datetime, parse_int

from .models import Subscription

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.stablecrm.models import User


def serialize_subscription(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "clientId": sub.client_id,
        "client": {"id": sub.client.id, "name": sub.client.name, "phone": sub.client.phone} if sub.client else None,
        "totalLessons": sub.total_lessons,
        "lessonsRemaining": sub.lessons_remaining,
        "durationMonths": sub.duration_months,
        "status": sub.status,
        "expiresAt": iso(sub.expires_at),
        "createdAt": iso(sub.created_at),
        "usedAt": iso(sub.used_at),
    }


def _int_field(payload: dict, key: str, errors: list[str], *, minimum: int) -> int | None:
    try:
        value = parse_int(payload.get(key))
    except ValueError:
        errors.append(f"{key} must be an integer.")
        return None
    if value is not None and value < minimum:
        errors.append(f"{key} must be at least {minimum}.")
    return value


def validate_subscription_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial:
        if payload.get("clientId") in (None, ""):
            errors.append("clientId is required.")
        if payload.get("totalLessons") in (None, ""):
            errors.append("totalLessons is required.")
    if payload.get("clientId") not in (None, ""):
        _int_field(payload, "clientId", errors, minimum=1)
    total = _int_field(payload, "totalLessons", errors, minimum=1)
    remaining = _int_field(payload, "lessonsRemaining", errors, minimum=0)
    _int_field(payload, "durationMonths", errors, minimum=1)
    if total is not None and remaining is not None and remaining > total:
        errors.append("lessonsRemaining cannot exceed totalLessons.")
    status = payload.get("status")
    if status is not None and status not in SUBSCRIPTION_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
    if payload.get("expiresAt"):
        try:
            parse_datetime(payload.get("expiresAt"))
        except ValueError:
            errors.append("expiresAt must be an ISO date.")
    return errors


def is_subscription_usable(sub: Subscription, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    if sub.status != "active" or sub.lessons_remaining <= 0:
        return False
    return sub.expires_at is None or sub.expires_at > now


def list_subscriptions(s: "Session", *, client_id: int | None = None, status: str | None = None) -> list[Subscription]:
    q = s.query(Subscription)
    if client_id is not None:
        q = q.filter(Subscription.client_id == client_id)
    if status:
        q = q.filter(Subscription.status == status)
    return q.order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()


def get_active_subscription(s: "Session", client_id: int, now: datetime | None = None) -> Subscription | None:
    """Newest subscription of the client that still has lessons and has not expired."""
    now = now or datetime.utcnow()
    return (
        s.query(Subscription)
        .filter(Subscription.client_id == client_id)
        .filter(Subscription.status == "active")
        .filter(Subscription.lessons_remaining > 0)
        .filter((Subscription.expires_at.is_(None)) | (Subscription.expires_at > now))
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def create_subscription(s: "Session", payload: dict, user: "User") -> Subscription:
    from app.stablecrm.modules.clients.models import Client

    client_id = parse_int(payload.get("clientId"))
    if client_id is None or s.get(Client, client_id) is None:
        raise ValueError("Client not found.")

    total = parse_int(payload.get("totalLessons")) or 0
    remaining = parse_int(payload.get("lessonsRemaining"))
    duration = parse_int(payload.get("durationMonths")) or DEFAULT_SUBSCRIPTION_MONTHS
    now = datetime.utcnow()
    expires_at = parse_datetime(payload.get("expiresAt")) or add_months(now, duration)

    sub = Subscription(
        client_id=client_id,
        total_lessons=total,
        lessons_remaining=total if remaining is None else remaining,
        duration_months=duration,
        status=payload.get("status") or "active",
        expires_at=expires_at,
        created_at=now,
    )
    if sub.lessons_remaining == 0 and sub.status == "active":
        sub.status = "used"
        sub.used_at = now
    s.add(sub)
    s.flush()

    record_event(
        s,
        actor=user,
        action="subscription.create",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={"client_id": client_id, "total_lessons": total, "expires_at": iso(expires_at)},
    )
    return sub


def update_subscription(s: "Session", sub: Subscription, payload: dict, user: "User") -> Subscription:
    changes = {}

    if "totalLessons" in payload:
        new_total = parse_int(payload.get("totalLessons"))
        if new_total is not None and new_total != sub.total_lessons:
            changes["total_lessons"] = {"old": sub.total_lessons, "new": new_total}
            sub.total_lessons = new_total

    if "lessonsRemaining" in payload:
        new_remaining = parse_int(payload.get("lessonsRemaining"))
        if new_remaining is not None and new_remaining != sub.lessons_remaining:
            changes["lessons_remaining"] = {"old": sub.lessons_remaining, "new": new_remaining}
            sub.lessons_remaining = new_remaining

    if sub.lessons_remaining > sub.total_lessons:
        raise ValueError("lessonsRemaining cannot exceed totalLessons.")

    if "durationMonths" in payload:
        new_duration = parse_int(payload.get("durationMonths"))
        if new_duration is not None and new_duration != sub.duration_months:
            changes["duration_months"] = {"old": sub.duration_months, "new": new_duration}
            sub.duration_months = new_duration

    if "expiresAt" in payload:
        new_expires = parse_datetime(payload.get("expiresAt"))
        if new_expires != sub.expires_at:
            changes["expires_at"] = {"old": iso(sub.expires_at), "new": iso(new_expires)}
            sub.expires_at = new_expires

    if "status" in payload and payload.get("status") and payload["status"] != sub.status:
        changes["status"] = {"old": sub.status, "new": payload["status"]}
        sub.status = payload["status"]

    if sub.lessons_remaining == 0 and sub.status == "active":
        changes["status"] = {"old": "active", "new": "used"}
        sub.status = "used"

    if sub.status == "used" and sub.used_at is None:
        sub.used_at = datetime.utcnow()
    elif sub.status == "active":
        sub.used_at = None

    record_event(
        s,
        actor=user,
        action="subscription.edit",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={"client_id": sub.client_id, "changes": changes},
    )
    return sub


def deduct_lesson(s: "Session", sub: Subscription, user: "User", *, lesson_id: int) -> Subscription:
    """
    Use one lesson of the subscription. Never goes below zero; the
    subscription flips to "used" when the last lesson is taken.
    """
    if sub.lessons_remaining <= 0:
        raise ValueError("Subscription has no lessons remaining.")
    before = sub.lessons_remaining
    sub.lessons_remaining = before - 1
    if sub.lessons_remaining == 0:
        sub.status = "used"
        sub.used_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="subscription.deduct",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={
            "lesson_id": lesson_id,
            "lessons_remaining": {"old": before, "new": sub.lessons_remaining},
            "status": sub.status,
        },
    )
    return sub


def expire_overdue_subscriptions(s: "Session", now: datetime | None = None) -> int:
    """Flip active subscriptions past their expiry date to "expired". Returns count."""
    now = now or datetime.utcnow()
    overdue = (
        s.query(Subscription)
        .filter(Subscription.status == "active")
        .filter(Subscription.expires_at.isnot(None))
        .filter(Subscription.expires_at <= now)
        .all()
    )
    for sub in overdue:
        sub.status = "expired"
    return len(overdue)
