from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.modules.landing.models import LandingContent
from app.stablecrm.modules.landing.service import (
    create_landing_content,
    list_landing_content,
    serialize_landing_content,
    update_landing_content,
    validate_landing_payload,
)
from app.stablecrm.rbac import require_permission, user_has_permission
from app.stablecrm.utils import get_payload, json_error

bp = Blueprint("landing", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/landing-content")
def landing_content_list():
    # Public: anonymous visitors see visible blocks; editors see everything.
    s = db_session()
    editor = user_has_permission(getattr(g, "current_user", None), "landing.edit")
    blocks = list_landing_content(s, include_hidden=editor)
    return jsonify([serialize_landing_content(b) for b in blocks])


@bp.post("/landing-content")
@require_permission("landing.edit")
def landing_content_create():
    s = db_session()
    payload = get_payload()
    errors = validate_landing_payload(payload)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        block = create_landing_content(s, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_landing_content(block)), 201


@bp.put("/landing-content/<int:content_id>")
@require_permission("landing.edit")
def landing_content_update(content_id: int):
    s = db_session()
    block = s.get(LandingContent, content_id)
    if not block:
        return json_error("Landing content not found", 404)

    payload = get_payload()
    errors = validate_landing_payload(payload, partial=True)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        update_landing_content(s, block, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_landing_content(block))
