import os

from flask import Blueprint, current_app, g, jsonify, request

from app.stablecrm.audit import decode_metadata, find_events, record_event
from app.stablecrm.auth import serialize_user
from app.stablecrm.constants import USER_ROLES
from app.stablecrm.db import db_session
from app.stablecrm.models import AuditEvent, User
from app.stablecrm.rbac import require_permission
from app.stablecrm.utils import clean_str, get_payload, iso, json_error, parse_bool, parse_date

bp = Blueprint("admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def serialize_audit_event(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "createdAt": iso(ev.created_at),
        "requestId": ev.request_id,
        "actorUserId": ev.actor_user_id,
        "actorUserName": ev.actor_user_name,
        "action": ev.action,
        "entityType": ev.entity_type,
        "entityId": ev.entity_id,
        "reason": ev.reason,
        "metadata": decode_metadata(ev),
        "clientIp": ev.client_ip,
    }


@bp.get("/users")
@require_permission("users.view")
def users_list():
    s = db_session()
    users = s.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify([serialize_user(u) for u in users])


@bp.put("/users/<int:user_id>/role")
@require_permission("users.edit")
def users_update_role(user_id: int):
    s = db_session()
    actor = _current_user()
    user = s.get(User, user_id)
    if not user:
        return json_error("User not found", 404)

    role = clean_str(get_payload().get("role")) or ""
    if role not in USER_ROLES:
        return json_error("Invalid role", 400, [f"Role must be one of: {', '.join(USER_ROLES)}"])
    if user.id == actor.id:
        return json_error("You cannot change your own role", 400)

    old_role = user.role
    user.role = role
    record_event(
        s,
        actor=actor,
        action="user.role_change",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"role": {"old": old_role, "new": role}},
    )
    s.commit()
    current_app.logger.info("User id=%s role %s -> %s by user id=%s", user.id, old_role, role, actor.id)
    return jsonify(serialize_user(user))


@bp.put("/users/<int:user_id>/active")
@require_permission("users.edit")
def users_update_active(user_id: int):
    s = db_session()
    actor = _current_user()
    user = s.get(User, user_id)
    if not user:
        return json_error("User not found", 404)

    payload = get_payload()
    if "isActive" not in payload:
        return json_error("isActive is required", 400)
    if user.id == actor.id:
        return json_error("You cannot deactivate your own account", 400)

    before = user.is_active
    user.is_active = parse_bool(payload.get("isActive"))
    record_event(
        s,
        actor=actor,
        action="user.activate" if user.is_active else "user.deactivate",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"is_active": {"old": before, "new": user.is_active}},
    )
    s.commit()
    return jsonify(serialize_user(user))


@bp.get("/admin/audit")
@require_permission("audit.view")
def audit_list():
    """
    Last 200 audit events with simple filters:
    - action (contains)
    - actor (user name contains)
    - entityType / entityId (exact, e.g. the history of one lesson)
    - dateFrom / dateTo (YYYY-MM-DD, inclusive)
    """
    try:
        date_from = parse_date(request.args.get("dateFrom"))
        date_to = parse_date(request.args.get("dateTo"))
    except ValueError:
        return json_error("dateFrom/dateTo must be YYYY-MM-DD", 400)

    events = find_events(
        db_session(),
        action=clean_str(request.args.get("action")),
        actor=clean_str(request.args.get("actor")),
        entity_type=clean_str(request.args.get("entityType")),
        entity_id=clean_str(request.args.get("entityId")),
        date_from=date_from,
        date_to=date_to,
    )
    return jsonify([serialize_audit_event(ev) for ev in events])


@bp.get("/admin/diagnostics")
@require_permission("admin.diagnostics")
def diagnostics():
    """Database connectivity and row counts."""
    from sqlalchemy import text

    from app.stablecrm.modules.certificates.models import Certificate
    from app.stablecrm.modules.clients.models import Client
    from app.stablecrm.modules.horses.models import Horse
    from app.stablecrm.modules.instructors.models import Instructor
    from app.stablecrm.modules.landing.models import LandingContent
    from app.stablecrm.modules.lessons.models import Lesson
    from app.stablecrm.modules.subscriptions.models import Subscription

    s = db_session()
    diag = {
        "appVersion": os.environ.get("APP_VERSION", "dev"),
        "env": current_app.config.get("ENV", "unknown"),
        "dbConnected": False,
        "dbError": None,
        "counts": {},
    }

    try:
        s.execute(text("SELECT 1"))
        diag["dbConnected"] = True
    except Exception as e:
        diag["dbError"] = str(e)

    if diag["dbConnected"]:
        try:
            for key, model in (
                ("users", User),
                ("horses", Horse),
                ("instructors", Instructor),
                ("clients", Client),
                ("certificates", Certificate),
                ("subscriptions", Subscription),
                ("lessons", Lesson),
                ("landingContent", LandingContent),
                ("auditEvents", AuditEvent),
            ):
                diag["counts"][key] = s.query(model).count()
        except Exception as e:
            diag["dbError"] = f"Count query failed: {e}"

    return jsonify(diag)


@bp.post("/admin/maintenance/expire-subscriptions")
@require_permission("admin.diagnostics")
def maintenance_expire_subscriptions():
    """Mark active subscriptions past their expiry date as expired."""
    from app.stablecrm.modules.subscriptions.service import expire_overdue_subscriptions

    s = db_session()
    expired = expire_overdue_subscriptions(s)
    record_event(
        s,
        actor=_current_user(),
        action="maintenance.expire_subscriptions",
        entity_type="Subscription",
        metadata={"expired": expired},
    )
    s.commit()
    current_app.logger.info("Expired %s overdue subscriptions", expired)
    return jsonify({"expired": expired})
