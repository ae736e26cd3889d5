from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.modules.subscriptions.models import Subscription
from app.stablecrm.modules.subscriptions.service import (
    create_subscription,
    list_subscriptions,
    serialize_subscription,
    update_subscription,
    validate_subscription_payload,
)
from app.stablecrm.rbac import require_permission
from app.stablecrm.utils import get_payload, json_error, parse_int

bp = Blueprint("subscriptions", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/subscriptions")
@require_permission("subscriptions.view")
def subscriptions_list():
    s = db_session()
    try:
        client_id = parse_int(request.args.get("clientId"))
    except ValueError:
        return json_error("clientId must be an integer", 400)
    status_filter = (request.args.get("status") or "").strip() or None
    subs = list_subscriptions(s, client_id=client_id, status=status_filter)
    return jsonify([serialize_subscription(sub) for sub in subs])


@bp.get("/subscriptions/<int:subscription_id>")
@require_permission("subscriptions.view")
def subscription_detail(subscription_id: int):
    s = db_session()
    sub = s.get(Subscription, subscription_id)
    if not sub:
        return json_error("Subscription not found", 404)
    return jsonify(serialize_subscription(sub))


@bp.get("/subscriptions/<int:subscription_id>/lessons")
@require_permission("lessons.view")
def subscription_lessons(subscription_id: int):
    from app.stablecrm.modules.lessons.service import list_lessons, serialize_lesson

    s = db_session()
    if not s.get(Subscription, subscription_id):
        return json_error("Subscription not found", 404)
    return jsonify([serialize_lesson(lesson) for lesson in list_lessons(s, subscription_id=subscription_id)])


@bp.post("/subscriptions")
@require_permission("subscriptions.create")
def subscriptions_create():
    s = db_session()
    payload = get_payload()
    errors = validate_subscription_payload(payload)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        sub = create_subscription(s, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_subscription(sub)), 201


@bp.put("/subscriptions/<int:subscription_id>")
@require_permission("subscriptions.edit")
def subscriptions_update(subscription_id: int):
    s = db_session()
    sub = s.get(Subscription, subscription_id)
    if not sub:
        return json_error("Subscription not found", 404)

    payload = get_payload()
    errors = validate_subscription_payload(payload, partial=True)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        update_subscription(s, sub, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_subscription(sub))
