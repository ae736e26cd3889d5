from __future__ import annotations

import hmac

from flask import Blueprint, Response, current_app, g, jsonify, request

from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.modules.lessons.calendar import feed_links, generate_ical_feed
from app.stablecrm.modules.lessons.models import Lesson
from app.stablecrm.modules.lessons.service import (
    create_lesson,
    delete_lesson,
    list_lessons,
    serialize_lesson,
    update_lesson,
    validate_lesson_payload,
)
from app.stablecrm.rbac import require_permission, user_has_permission
from app.stablecrm.utils import get_payload, json_error, parse_datetime, parse_int, parse_range_end

bp = Blueprint("lessons", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _range_args():
    """(start, end) from ?startDate=&endDate=; raises ValueError on bad input."""
    return parse_datetime(request.args.get("startDate")), parse_range_end(request.args.get("endDate"))


@bp.get("/lessons")
@require_permission("lessons.view")
def lessons_list():
    s = db_session()
    try:
        start, end = _range_args()
        client_id = parse_int(request.args.get("clientId"))
    except ValueError:
        return json_error("Invalid filter: startDate/endDate must be ISO dates, clientId an integer", 400)
    status_filter = (request.args.get("status") or "").strip() or None
    lessons = list_lessons(s, start=start, end=end, client_id=client_id, status=status_filter)
    return jsonify([serialize_lesson(lesson) for lesson in lessons])


@bp.get("/lessons/<int:lesson_id>")
@require_permission("lessons.view")
def lesson_detail(lesson_id: int):
    s = db_session()
    lesson = s.get(Lesson, lesson_id)
    if not lesson:
        return json_error("Lesson not found", 404)
    return jsonify(serialize_lesson(lesson))


@bp.post("/lessons")
@require_permission("lessons.create")
def lessons_create():
    s = db_session()
    payload = get_payload()
    errors = validate_lesson_payload(payload)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        lesson = create_lesson(s, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_lesson(lesson)), 201


@bp.put("/lessons/<int:lesson_id>")
@require_permission("lessons.edit")
def lessons_update(lesson_id: int):
    s = db_session()
    lesson = s.get(Lesson, lesson_id)
    if not lesson:
        return json_error("Lesson not found", 404)

    payload = get_payload()
    errors = validate_lesson_payload(payload, partial=True)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        update_lesson(s, lesson, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_lesson(lesson))


@bp.delete("/lessons/<int:lesson_id>")
@require_permission("lessons.delete")
def lessons_delete(lesson_id: int):
    s = db_session()
    lesson = s.get(Lesson, lesson_id)
    if not lesson:
        return json_error("Lesson not found", 404)

    delete_lesson(s, lesson, _current_user())
    s.commit()
    return "", 204


def _feed_token_ok(token: str | None) -> bool:
    expected = (current_app.config.get("CALENDAR_FEED_TOKEN") or "").strip()
    if not expected or not token:
        return False
    return hmac.compare_digest(token, expected)


@bp.get("/calendar/lessons.ics")
def calendar_feed():
    user = getattr(g, "current_user", None)
    if not user_has_permission(user, "calendar.view") and not _feed_token_ok(request.args.get("token")):
        if user:
            current_app.logger.warning("Calendar feed denied for user id=%s", user.id)
        return json_error("Authentication required", 401)

    try:
        start, end = _range_args()
    except ValueError:
        return json_error("startDate/endDate must be ISO dates", 400)

    s = db_session()
    lessons = list_lessons(s, start=start, end=end)
    body = generate_ical_feed(sorted(lessons, key=lambda lesson: (lesson.date, lesson.id)))
    return Response(
        body,
        headers={
            "Content-Disposition": 'inline; filename="lessons.ics"',
            "Cache-Control": "no-cache, must-revalidate",
        },
        content_type="text/calendar; charset=utf-8",
    )


@bp.get("/calendar/links")
@require_permission("calendar.view")
def calendar_links():
    base_url = (current_app.config.get("PUBLIC_BASE_URL") or "").strip() or request.host_url
    token = (current_app.config.get("CALENDAR_FEED_TOKEN") or "").strip() or None
    return jsonify(feed_links(base_url, token))
