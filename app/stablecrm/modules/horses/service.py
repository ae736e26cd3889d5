from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from app.stablecrm.audit import record_event
from app.stablecrm.constants import DELETED_HORSE_MARKER, HORSE_STATUSES
from app.stablecrm.utils import clean_str, iso, parse_int

from .models import Horse

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.stablecrm.models import User


def serialize_horse(horse: Horse) -> dict:
    return {
        "id": horse.id,
        "nickname": horse.nickname,
        "breed": horse.breed,
        "age": horse.age,
        "status": horse.status,
        "notes": horse.notes,
        "createdAt": iso(horse.created_at),
    }


def validate_horse_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate horse creation/update payload. Returns list of errors."""
    errors = []
    if not partial or "nickname" in payload:
        if not clean_str(payload.get("nickname")):
            errors.append("Nickname is required.")
    if not partial or "breed" in payload:
        if not clean_str(payload.get("breed")):
            errors.append("Breed is required.")
    if not partial or "age" in payload:
        try:
            age = parse_int(payload.get("age"))
        except ValueError:
            age = -1
        if age is None or age < 0 or age > 60:
            errors.append("Age must be a whole number between 0 and 60.")
    status = payload.get("status")
    if status is not None and status not in HORSE_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(HORSE_STATUSES)}")
    return errors


def list_horses(s: "Session", *, status: str | None = None) -> list[Horse]:
    q = s.query(Horse)
    if status:
        q = q.filter(Horse.status == status)
    return q.order_by(Horse.nickname.asc(), Horse.id.asc()).all()


def create_horse(s: "Session", payload: dict, user: "User") -> Horse:
    horse = Horse(
        nickname=clean_str(payload.get("nickname")) or "",
        breed=clean_str(payload.get("breed")) or "",
        age=parse_int(payload.get("age")) or 0,
        status=payload.get("status") or "active",
        notes=clean_str(payload.get("notes")),
    )
    s.add(horse)
    s.flush()

    record_event(
        s,
        actor=user,
        action="horse.create",
        entity_type="Horse",
        entity_id=str(horse.id),
        metadata={"nickname": horse.nickname, "status": horse.status},
    )
    return horse


def update_horse(s: "Session", horse: Horse, payload: dict, user: "User") -> Horse:
    """Partial update: only keys present in payload are touched."""
    changes = {}

    if "nickname" in payload:
        new_nickname = clean_str(payload.get("nickname")) or horse.nickname
        if new_nickname != horse.nickname:
            changes["nickname"] = {"old": horse.nickname, "new": new_nickname}
            horse.nickname = new_nickname

    if "breed" in payload:
        new_breed = clean_str(payload.get("breed")) or horse.breed
        if new_breed != horse.breed:
            changes["breed"] = {"old": horse.breed, "new": new_breed}
            horse.breed = new_breed

    if "age" in payload:
        new_age = parse_int(payload.get("age"))
        if new_age is not None and new_age != horse.age:
            changes["age"] = {"old": horse.age, "new": new_age}
            horse.age = new_age

    if "status" in payload and payload.get("status") and payload["status"] != horse.status:
        changes["status"] = {"old": horse.status, "new": payload["status"]}
        horse.status = payload["status"]

    if "notes" in payload:
        new_notes = clean_str(payload.get("notes"))
        if new_notes != horse.notes:
            changes["notes"] = {"old": horse.notes, "new": new_notes}
            horse.notes = new_notes

    record_event(
        s,
        actor=user,
        action="horse.edit",
        entity_type="Horse",
        entity_id=str(horse.id),
        metadata={"nickname": horse.nickname, "changes": changes},
    )
    return horse


def delete_horse(s: "Session", horse: Horse, user: "User") -> str:
    """
    Remove a horse from the stable.

    Assignments to lessons that are not completed are dropped. If completed
    lessons still reference the horse it is kept for historical statistics:
    renamed with DELETED_HORSE_MARKER and set to "unavailable".
    Returns "archived" or "deleted". Caller commits (single transaction).
    """
    from app.stablecrm.modules.lessons.models import Lesson, LessonHorse

    open_lessons = select(Lesson.id).where(Lesson.status != "completed")
    dropped = s.execute(
        delete(LessonHorse)
        .where(LessonHorse.horse_id == horse.id)
        .where(LessonHorse.lesson_id.in_(open_lessons))
        .execution_options(synchronize_session=False)
    ).rowcount

    remaining = s.query(LessonHorse.id).filter(LessonHorse.horse_id == horse.id).first()
    if remaining is not None:
        old_nickname = horse.nickname
        if not horse.nickname.startswith(DELETED_HORSE_MARKER):
            horse.nickname = f"{DELETED_HORSE_MARKER}{horse.nickname}"
        horse.status = "unavailable"
        outcome = "archived"
        record_event(
            s,
            actor=user,
            action="horse.archive",
            entity_type="Horse",
            entity_id=str(horse.id),
            reason="Referenced by completed lessons",
            metadata={"nickname": old_nickname, "dropped_assignments": dropped},
        )
    else:
        outcome = "deleted"
        record_event(
            s,
            actor=user,
            action="horse.delete",
            entity_type="Horse",
            entity_id=str(horse.id),
            metadata={"nickname": horse.nickname, "dropped_assignments": dropped},
        )
        s.delete(horse)
    s.flush()
    return outcome
