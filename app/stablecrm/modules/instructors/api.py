from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.modules.instructors.models import Instructor
from app.stablecrm.modules.instructors.service import (
    create_instructor,
    delete_instructor,
    list_instructors,
    serialize_instructor,
    update_instructor,
    validate_instructor_payload,
)
from app.stablecrm.rbac import require_permission
from app.stablecrm.utils import get_payload, json_error, parse_bool

bp = Blueprint("instructors", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/instructors")
@require_permission("instructors.view")
def instructors_list():
    s = db_session()
    active_only = parse_bool(request.args.get("active") or "")
    return jsonify([serialize_instructor(i) for i in list_instructors(s, active_only=active_only)])


@bp.get("/instructors/<int:instructor_id>")
@require_permission("instructors.view")
def instructor_detail(instructor_id: int):
    s = db_session()
    instructor = s.get(Instructor, instructor_id)
    if not instructor:
        return json_error("Instructor not found", 404)
    return jsonify(serialize_instructor(instructor))


@bp.post("/instructors")
@require_permission("instructors.create")
def instructors_create():
    s = db_session()
    payload = get_payload()
    errors = validate_instructor_payload(payload)
    if errors:
        return json_error("Validation failed", 400, errors)

    instructor = create_instructor(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_instructor(instructor)), 201


@bp.put("/instructors/<int:instructor_id>")
@require_permission("instructors.edit")
def instructors_update(instructor_id: int):
    s = db_session()
    instructor = s.get(Instructor, instructor_id)
    if not instructor:
        return json_error("Instructor not found", 404)

    payload = get_payload()
    errors = validate_instructor_payload(payload, partial=True)
    if errors:
        return json_error("Validation failed", 400, errors)

    update_instructor(s, instructor, payload, _current_user())
    s.commit()
    return jsonify(serialize_instructor(instructor))


@bp.delete("/instructors/<int:instructor_id>")
@require_permission("instructors.delete")
def instructors_delete(instructor_id: int):
    s = db_session()
    instructor = s.get(Instructor, instructor_id)
    if not instructor:
        return json_error("Instructor not found", 404)

    delete_instructor(s, instructor, _current_user())
    s.commit()
    return "", 204
