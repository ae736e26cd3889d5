from __future__ import annotations

from typing import TYPE_CHECKING

from app.stablecrm.audit import record_event
from app.stablecrm.utils import clean_str, iso, parse_bool

from .models import Instructor

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.stablecrm.models import User


def serialize_instructor(instructor: Instructor) -> dict:
    return {
        "id": instructor.id,
        "name": instructor.name,
        "phone": instructor.phone,
        "email": instructor.email,
        "specializations": list(instructor.specializations or []),
        "isActive": instructor.is_active,
        "createdAt": iso(instructor.created_at),
    }


def _clean_specializations(raw) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    out = []
    for item in raw:
        v = clean_str(item)
        if v and v not in out:
            out.append(v)
    return out


def validate_instructor_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    specs = payload.get("specializations")
    if specs is not None and not isinstance(specs, (list, str)):
        errors.append("Specializations must be a list of strings.")
    return errors


def list_instructors(s: "Session", *, active_only: bool = False) -> list[Instructor]:
    q = s.query(Instructor)
    if active_only:
        q = q.filter(Instructor.is_active.is_(True))
    return q.order_by(Instructor.name.asc(), Instructor.id.asc()).all()


def create_instructor(s: "Session", payload: dict, user: "User") -> Instructor:
    instructor = Instructor(
        name=clean_str(payload.get("name")) or "",
        phone=clean_str(payload.get("phone")),
        email=clean_str(payload.get("email")),
        specializations=_clean_specializations(payload.get("specializations")),
        is_active=parse_bool(payload["isActive"]) if "isActive" in payload else True,
    )
    s.add(instructor)
    s.flush()

    record_event(
        s,
        actor=user,
        action="instructor.create",
        entity_type="Instructor",
        entity_id=str(instructor.id),
        metadata={"name": instructor.name},
    )
    return instructor


def update_instructor(s: "Session", instructor: Instructor, payload: dict, user: "User") -> Instructor:
    changes = {}

    if "name" in payload:
        new_name = clean_str(payload.get("name")) or instructor.name
        if new_name != instructor.name:
            changes["name"] = {"old": instructor.name, "new": new_name}
            instructor.name = new_name

    for key in ("phone", "email"):
        if key in payload:
            new_value = clean_str(payload.get(key))
            if new_value != getattr(instructor, key):
                changes[key] = {"old": getattr(instructor, key), "new": new_value}
                setattr(instructor, key, new_value)

    if "specializations" in payload:
        new_specs = _clean_specializations(payload.get("specializations"))
        if new_specs != list(instructor.specializations or []):
            changes["specializations"] = {"old": instructor.specializations, "new": new_specs}
            instructor.specializations = new_specs

    if "isActive" in payload:
        new_active = parse_bool(payload.get("isActive"))
        if new_active != instructor.is_active:
            changes["is_active"] = {"old": instructor.is_active, "new": new_active}
            instructor.is_active = new_active

    record_event(
        s,
        actor=user,
        action="instructor.edit",
        entity_type="Instructor",
        entity_id=str(instructor.id),
        metadata={"name": instructor.name, "changes": changes},
    )
    return instructor


def delete_instructor(s: "Session", instructor: Instructor, user: "User") -> str:
    """Delete, or deactivate when any lesson references the instructor. Returns the outcome."""
    from app.stablecrm.modules.lessons.models import LessonInstructor

    referenced = s.query(LessonInstructor.id).filter(LessonInstructor.instructor_id == instructor.id).first()
    if referenced is not None:
        instructor.is_active = False
        record_event(
            s,
            actor=user,
            action="instructor.deactivate",
            entity_type="Instructor",
            entity_id=str(instructor.id),
            reason="Referenced by lessons",
            metadata={"name": instructor.name},
        )
        return "deactivated"

    record_event(
        s,
        actor=user,
        action="instructor.delete",
        entity_type="Instructor",
        entity_id=str(instructor.id),
        metadata={"name": instructor.name},
    )
    s.delete(instructor)
    s.flush()
    return "deleted"
