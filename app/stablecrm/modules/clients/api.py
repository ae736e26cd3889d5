from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.modules.clients.models import Client
from app.stablecrm.modules.clients.service import (
    create_client,
    delete_client,
    list_clients,
    search_clients,
    serialize_client,
    update_client,
    validate_client_payload,
)
from app.stablecrm.rbac import require_permission
from app.stablecrm.utils import get_payload, json_error

bp = Blueprint("clients", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/clients")
@require_permission("clients.view")
def clients_list():
    s = db_session()
    search = (request.args.get("search") or "").strip()
    clients = search_clients(s, search) if search else list_clients(s)
    return jsonify([serialize_client(c) for c in clients])


@bp.get("/clients/<int:client_id>")
@require_permission("clients.view")
def client_detail(client_id: int):
    s = db_session()
    client = s.get(Client, client_id)
    if not client:
        return json_error("Client not found", 404)
    return jsonify(serialize_client(client))


@bp.post("/clients")
@require_permission("clients.create")
def clients_create():
    s = db_session()
    payload = get_payload()
    errors = validate_client_payload(payload)
    if errors:
        return json_error("Validation failed", 400, errors)

    client = create_client(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_client(client)), 201


@bp.put("/clients/<int:client_id>")
@require_permission("clients.edit")
def clients_update(client_id: int):
    s = db_session()
    client = s.get(Client, client_id)
    if not client:
        return json_error("Client not found", 404)

    payload = get_payload()
    errors = validate_client_payload(payload, partial=True)
    if errors:
        return json_error("Validation failed", 400, errors)

    update_client(s, client, payload, _current_user())
    s.commit()
    return jsonify(serialize_client(client))


@bp.delete("/clients/<int:client_id>")
@require_permission("clients.delete")
def clients_delete(client_id: int):
    s = db_session()
    client = s.get(Client, client_id)
    if not client:
        return json_error("Client not found", 404)

    try:
        delete_client(s, client, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return "", 204


@bp.get("/clients/<int:client_id>/subscriptions")
@require_permission("subscriptions.view")
def client_subscriptions(client_id: int):
    from app.stablecrm.modules.subscriptions.service import list_subscriptions, serialize_subscription

    s = db_session()
    if not s.get(Client, client_id):
        return json_error("Client not found", 404)
    return jsonify([serialize_subscription(sub) for sub in list_subscriptions(s, client_id=client_id)])


@bp.get("/clients/<int:client_id>/lessons")
@require_permission("lessons.view")
def client_lessons(client_id: int):
    from app.stablecrm.modules.lessons.service import list_lessons, serialize_lesson

    s = db_session()
    if not s.get(Client, client_id):
        return json_error("Client not found", 404)
    return jsonify([serialize_lesson(lesson) for lesson in list_lessons(s, client_id=client_id)])
