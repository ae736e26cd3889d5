from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.modules.horses.models import Horse
from app.stablecrm.modules.horses.service import (
    create_horse,
    delete_horse,
    list_horses,
    serialize_horse,
    update_horse,
    validate_horse_payload,
)
from app.stablecrm.rbac import require_permission
from app.stablecrm.utils import get_payload, json_error

bp = Blueprint("horses", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/horses")
@require_permission("horses.view")
def horses_list():
    s = db_session()
    status_filter = (request.args.get("status") or "").strip() or None
    horses = list_horses(s, status=status_filter)
    return jsonify([serialize_horse(h) for h in horses])


@bp.get("/horses/<int:horse_id>")
@require_permission("horses.view")
def horse_detail(horse_id: int):
    s = db_session()
    horse = s.get(Horse, horse_id)
    if not horse:
        return json_error("Horse not found", 404)
    return jsonify(serialize_horse(horse))


@bp.post("/horses")
@require_permission("horses.create")
def horses_create():
    s = db_session()
    payload = get_payload()
    errors = validate_horse_payload(payload)
    if errors:
        return json_error("Validation failed", 400, errors)

    horse = create_horse(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_horse(horse)), 201


@bp.put("/horses/<int:horse_id>")
@require_permission("horses.edit")
def horses_update(horse_id: int):
    s = db_session()
    horse = s.get(Horse, horse_id)
    if not horse:
        return json_error("Horse not found", 404)

    payload = get_payload()
    errors = validate_horse_payload(payload, partial=True)
    if errors:
        return json_error("Validation failed", 400, errors)

    update_horse(s, horse, payload, _current_user())
    s.commit()
    return jsonify(serialize_horse(horse))


@bp.delete("/horses/<int:horse_id>")
@require_permission("horses.delete")
def horses_delete(horse_id: int):
    s = db_session()
    horse = s.get(Horse, horse_id)
    if not horse:
        return json_error("Horse not found", 404)

    outcome = delete_horse(s, horse, _current_user())
    s.commit()
    current_app.logger.info("Horse id=%s %s", horse_id, outcome)
    return "", 204
