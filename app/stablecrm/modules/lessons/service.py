from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.stablecrm.audit import record_event
from app.stablecrm.constants import (
    DEFAULT_LESSON_COSTS,
    DEFAULT_LESSON_DURATION,
    LESSON_STATUSES,
    LESSON_TYPE_LABELS,
    LESSON_TYPES,
    PAYMENT_TYPES,
)
from app.stablecrm.modules.certificates.service import is_certificate_usable, redeem_certificate
from app.stablecrm.modules.subscriptions.service import (
    deduct_lesson,
    get_active_subscription,
    is_subscription_usable,
)
from app.stablecrm.utils import clean_str, iso, money, parse_bool, parse_datetime, parse_decimal, parse_id_list, parse_int

from .models import Lesson, LessonHorse, LessonInstructor

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.stablecrm.models import User

logger = logging.getLogger(__name__)


def serialize_lesson(lesson: Lesson) -> dict:
    client = lesson.client
    cert = lesson.certificate
    sub = lesson.subscription
    return {
        "id": lesson.id,
        "clientId": lesson.client_id,
        "client": {"id": client.id, "name": client.name, "phone": client.phone} if client else None,
        "date": iso(lesson.date),
        "duration": lesson.duration,
        "type": lesson.type,
        "typeLabel": LESSON_TYPE_LABELS.get(lesson.type, lesson.type),
        "paymentType": lesson.payment_type,
        "cost": money(lesson.cost),
        "status": lesson.status,
        "isPaid": lesson.is_paid,
        "notes": lesson.notes,
        "certificateId": lesson.certificate_id,
        "certificate": {"id": cert.id, "number": cert.number, "status": cert.status} if cert else None,
        "subscriptionId": lesson.subscription_id,
        "subscription": (
            {"id": sub.id, "lessonsRemaining": sub.lessons_remaining, "status": sub.status} if sub else None
        ),
        "instructorIds": [link.instructor_id for link in lesson.instructor_links],
        "horseIds": [link.horse_id for link in lesson.horse_links],
        "lessonInstructors": [
            {"instructorId": link.instructor_id, "instructor": {"id": link.instructor.id, "name": link.instructor.name}}
            for link in lesson.instructor_links
        ],
        "lessonHorses": [
            {"horseId": link.horse_id, "horse": {"id": link.horse.id, "nickname": link.horse.nickname}}
            for link in lesson.horse_links
        ],
        "createdAt": iso(lesson.created_at),
    }


def validate_lesson_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate lesson creation/update payload. Returns list of errors."""
    errors: list[str] = []

    if not partial or "clientId" in payload:
        try:
            if parse_int(payload.get("clientId")) is None:
                errors.append("clientId is required.")
        except ValueError:
            errors.append("clientId must be an integer.")

    if not partial or "date" in payload:
        try:
            if parse_datetime(payload.get("date")) is None:
                errors.append("Date is required.")
        except ValueError:
            errors.append("Date must be an ISO datetime.")

    if not partial or "type" in payload:
        if payload.get("type") not in LESSON_TYPES:
            errors.append(f"Invalid type. Must be one of: {', '.join(LESSON_TYPES)}")

    if not partial or "paymentType" in payload:
        if payload.get("paymentType") not in PAYMENT_TYPES:
            errors.append(f"Invalid paymentType. Must be one of: {', '.join(PAYMENT_TYPES)}")

    status = payload.get("status")
    if status is not None and status not in LESSON_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(LESSON_STATUSES)}")

    if "duration" in payload:
        try:
            duration = parse_int(payload.get("duration"))
        except ValueError:
            duration = 0
        if duration is not None and duration <= 0:
            errors.append("Duration must be a positive number of minutes.")

    if "cost" in payload:
        try:
            cost = parse_decimal(payload.get("cost"))
        except ValueError:
            cost = None
            errors.append("Cost must be a number.")
        if cost is not None and cost < 0:
            errors.append("Cost cannot be negative.")

    for key, label in (("instructorIds", "instructor"), ("horseIds", "horse")):
        if not partial or key in payload:
            try:
                ids = parse_id_list(payload.get(key))
            except ValueError:
                errors.append(f"{key} must be a list of ids.")
                continue
            if not ids:
                errors.append(f"At least one {label} is required.")

    for key in ("certificateId", "subscriptionId"):
        if payload.get(key) not in (None, ""):
            try:
                parse_int(payload.get(key))
            except ValueError:
                errors.append(f"{key} must be an integer.")

    return errors


def list_lessons(
    s: "Session",
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    client_id: int | None = None,
    subscription_id: int | None = None,
    status: str | None = None,
) -> list[Lesson]:
    q = s.query(Lesson)
    if start is not None:
        q = q.filter(Lesson.date >= start)
    if end is not None:
        q = q.filter(Lesson.date <= end)
    if client_id is not None:
        q = q.filter(Lesson.client_id == client_id)
    if subscription_id is not None:
        q = q.filter(Lesson.subscription_id == subscription_id)
    if status:
        q = q.filter(Lesson.status == status)
    return q.order_by(Lesson.date.desc(), Lesson.id.desc()).all()


def _require_client(s: "Session", client_id: int | None):
    from app.stablecrm.modules.clients.models import Client

    client = s.get(Client, client_id) if client_id is not None else None
    if client is None:
        raise ValueError("Client not found.")
    return client


def _require_instructors(s: "Session", ids: list[int]) -> list[int]:
    from app.stablecrm.modules.instructors.models import Instructor

    missing = [i for i in ids if s.get(Instructor, i) is None]
    if missing:
        raise ValueError(f"Instructor not found: {', '.join(str(i) for i in missing)}")
    return ids


def _require_horses(s: "Session", ids: list[int]) -> list[int]:
    from app.stablecrm.modules.horses.models import Horse

    missing = [i for i in ids if s.get(Horse, i) is None]
    if missing:
        raise ValueError(f"Horse not found: {', '.join(str(i) for i in missing)}")
    return ids


def _resolve_certificate_id(s: "Session", raw, client_id: int) -> int | None:
    from app.stablecrm.modules.certificates.models import Certificate

    cert_id = parse_int(raw)
    if cert_id is None:
        return None
    cert = s.get(Certificate, cert_id)
    if cert is None:
        raise ValueError("Certificate not found.")
    if cert.client_id is not None and cert.client_id != client_id:
        raise ValueError("Certificate belongs to another client.")
    return cert_id


def _resolve_subscription_id(s: "Session", raw, client_id: int) -> int | None:
    from app.stablecrm.modules.subscriptions.models import Subscription

    sub_id = parse_int(raw)
    if sub_id is None:
        return None
    sub = s.get(Subscription, sub_id)
    if sub is None:
        raise ValueError("Subscription not found.")
    if sub.client_id != client_id:
        raise ValueError("Subscription belongs to another client.")
    return sub_id


def _relink_payments_for_client(s: "Session", lesson: Lesson, payload: dict, changes: dict) -> None:
    """Drop certificate/subscription links that do not belong to the lesson's new client."""
    if "certificateId" not in payload and lesson.certificate_id is not None:
        try:
            _resolve_certificate_id(s, lesson.certificate_id, lesson.client_id)
        except ValueError:
            changes["certificate_id"] = {"old": lesson.certificate_id, "new": None}
            lesson.certificate_id = None

    if "subscriptionId" not in payload and lesson.subscription_id is not None:
        try:
            _resolve_subscription_id(s, lesson.subscription_id, lesson.client_id)
        except ValueError:
            new_sub_id = None
            if lesson.payment_type == "subscription":
                active = get_active_subscription(s, lesson.client_id)
                new_sub_id = active.id if active is not None else None
            changes["subscription_id"] = {"old": lesson.subscription_id, "new": new_sub_id}
            lesson.subscription_id = new_sub_id


def _apply_completion(s: "Session", lesson: Lesson, user: "User") -> None:
    """
    Settle payment for a lesson that just became completed.

    Subscription lessons take one lesson from the linked subscription, or from
    the client's newest usable one (which then gets linked). A linked active
    certificate is marked used. Cost is never touched.
    """
    now = datetime.utcnow()
    details: dict = {"payment_type": lesson.payment_type}

    if lesson.payment_type == "subscription":
        sub = lesson.subscription
        if sub is None or sub.client_id != lesson.client_id or not is_subscription_usable(sub, now):
            sub = get_active_subscription(s, lesson.client_id, now)
        if sub is None:
            logger.warning(
                "Lesson id=%s completed without a usable subscription (client_id=%s)",
                lesson.id,
                lesson.client_id,
            )
            details["deducted"] = False
        else:
            deduct_lesson(s, sub, user, lesson_id=lesson.id)
            lesson.subscription_id = sub.id
            lesson.subscription = sub
            details["deducted"] = True
            details["subscription_id"] = sub.id
            details["lessons_remaining"] = sub.lessons_remaining

    cert = lesson.certificate
    if (
        cert is not None
        and cert.client_id in (None, lesson.client_id)
        and is_certificate_usable(cert, now)
    ):
        redeem_certificate(s, cert, user, lesson_id=lesson.id)
        details["certificate_id"] = cert.id

    record_event(
        s,
        actor=user,
        action="lesson.complete",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata=details,
    )


def create_lesson(s: "Session", payload: dict, user: "User") -> Lesson:
    client = _require_client(s, parse_int(payload.get("clientId")))
    instructor_ids = _require_instructors(s, parse_id_list(payload.get("instructorIds")))
    horse_ids = _require_horses(s, parse_id_list(payload.get("horseIds")))

    payment_type = payload.get("paymentType")
    cost = parse_decimal(payload.get("cost"))
    if cost is None:
        cost = parse_decimal(DEFAULT_LESSON_COSTS[payment_type])

    lesson = Lesson(
        client_id=client.id,
        date=parse_datetime(payload.get("date")),
        duration=parse_int(payload.get("duration")) or DEFAULT_LESSON_DURATION,
        type=payload.get("type"),
        payment_type=payment_type,
        cost=cost,
        status=payload.get("status") or "planned",
        is_paid=parse_bool(payload.get("isPaid", False)),
        notes=clean_str(payload.get("notes")),
        certificate_id=_resolve_certificate_id(s, payload.get("certificateId"), client.id),
        subscription_id=_resolve_subscription_id(s, payload.get("subscriptionId"), client.id),
    )
    if payment_type == "subscription" and lesson.subscription_id is None:
        active = get_active_subscription(s, client.id)
        if active is not None:
            lesson.subscription_id = active.id

    lesson.instructor_links = [LessonInstructor(instructor_id=i) for i in instructor_ids]
    lesson.horse_links = [LessonHorse(horse_id=h) for h in horse_ids]
    s.add(lesson)
    s.flush()
    s.refresh(lesson)

    record_event(
        s,
        actor=user,
        action="lesson.create",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata={
            "client_id": client.id,
            "date": iso(lesson.date),
            "type": lesson.type,
            "payment_type": lesson.payment_type,
            "cost": money(lesson.cost),
            "instructor_ids": instructor_ids,
            "horse_ids": horse_ids,
        },
    )

    if lesson.status == "completed":
        _apply_completion(s, lesson, user)
        s.flush()
    return lesson


def update_lesson(s: "Session", lesson: Lesson, payload: dict, user: "User") -> Lesson:
    """Partial update. Moving to "completed" settles payment in the same transaction."""
    changes = {}
    was_completed = lesson.status == "completed"
    client_changed = False

    if "clientId" in payload:
        client = _require_client(s, parse_int(payload.get("clientId")))
        if client.id != lesson.client_id:
            changes["client_id"] = {"old": lesson.client_id, "new": client.id}
            lesson.client_id = client.id
            lesson.client = client
            client_changed = True

    if "date" in payload:
        new_date = parse_datetime(payload.get("date"))
        if new_date is not None and new_date != lesson.date:
            changes["date"] = {"old": iso(lesson.date), "new": iso(new_date)}
            lesson.date = new_date

    if "duration" in payload:
        new_duration = parse_int(payload.get("duration"))
        if new_duration is not None and new_duration != lesson.duration:
            changes["duration"] = {"old": lesson.duration, "new": new_duration}
            lesson.duration = new_duration

    for key, attr in (("type", "type"), ("paymentType", "payment_type")):
        if key in payload and payload.get(key) and payload[key] != getattr(lesson, attr):
            changes[attr] = {"old": getattr(lesson, attr), "new": payload[key]}
            setattr(lesson, attr, payload[key])

    if "cost" in payload:
        new_cost = parse_decimal(payload.get("cost"))
        if new_cost is not None and new_cost != lesson.cost:
            changes["cost"] = {"old": money(lesson.cost), "new": money(new_cost)}
            lesson.cost = new_cost

    if "isPaid" in payload:
        new_paid = parse_bool(payload.get("isPaid"))
        if new_paid != lesson.is_paid:
            changes["is_paid"] = {"old": lesson.is_paid, "new": new_paid}
            lesson.is_paid = new_paid

    if "notes" in payload:
        new_notes = clean_str(payload.get("notes"))
        if new_notes != lesson.notes:
            changes["notes"] = {"old": lesson.notes, "new": new_notes}
            lesson.notes = new_notes

    if "certificateId" in payload:
        new_cert_id = _resolve_certificate_id(s, payload.get("certificateId"), lesson.client_id)
        if new_cert_id != lesson.certificate_id:
            changes["certificate_id"] = {"old": lesson.certificate_id, "new": new_cert_id}
            lesson.certificate_id = new_cert_id

    if "subscriptionId" in payload:
        new_sub_id = _resolve_subscription_id(s, payload.get("subscriptionId"), lesson.client_id)
        if new_sub_id != lesson.subscription_id:
            changes["subscription_id"] = {"old": lesson.subscription_id, "new": new_sub_id}
            lesson.subscription_id = new_sub_id

    if client_changed:
        _relink_payments_for_client(s, lesson, payload, changes)

    if "instructorIds" in payload:
        new_ids = _require_instructors(s, parse_id_list(payload.get("instructorIds")))
        old_ids = [link.instructor_id for link in lesson.instructor_links]
        if new_ids != old_ids:
            changes["instructor_ids"] = {"old": old_ids, "new": new_ids}
            lesson.instructor_links = [LessonInstructor(instructor_id=i) for i in new_ids]

    if "horseIds" in payload:
        new_ids = _require_horses(s, parse_id_list(payload.get("horseIds")))
        old_ids = [link.horse_id for link in lesson.horse_links]
        if new_ids != old_ids:
            changes["horse_ids"] = {"old": old_ids, "new": new_ids}
            lesson.horse_links = [LessonHorse(horse_id=h) for h in new_ids]

    if "status" in payload and payload.get("status") and payload["status"] != lesson.status:
        changes["status"] = {"old": lesson.status, "new": payload["status"]}
        lesson.status = payload["status"]

    s.flush()
    # Reload relationships so completion sees the new certificate/subscription.
    s.refresh(lesson)

    record_event(
        s,
        actor=user,
        action="lesson.edit",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata={"changes": changes},
    )

    if lesson.status == "completed" and not was_completed:
        _apply_completion(s, lesson, user)
        s.flush()
    return lesson


def delete_lesson(s: "Session", lesson: Lesson, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="lesson.delete",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata={"client_id": lesson.client_id, "date": iso(lesson.date), "status": lesson.status},
    )
    s.delete(lesson)
    s.flush()
