from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session

from app.stablecrm.audit import record_event
from app.stablecrm.constants import ROLE_ADMINISTRATOR, ROLE_OBSERVER
from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.rbac import permissions_for_role
from app.stablecrm.security import ensure_csrf_token
from app.stablecrm.utils import clean_str, get_payload, iso, json_error
from app.stablecrm.vk_client import VKError, vk_client_from_config

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 10
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "vkId": user.vk_id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "isActive": user.is_active,
        "createdAt": iso(user.created_at),
        "lastLoginAt": iso(user.last_login_at),
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def find_or_create_vk_user(s, *, vk_id: str, name: str, email: str | None) -> tuple[User, bool]:
    """Look up a user by VK id, creating it on first login. Returns (user, created)."""
    user = s.query(User).filter(User.vk_id == vk_id).one_or_none()
    if user:
        return user, False

    admin_vk_id = (current_app.config.get("ADMIN_VK_ID") or "").strip()
    role = ROLE_ADMINISTRATOR if admin_vk_id and vk_id == admin_vk_id else ROLE_OBSERVER
    user = User(vk_id=vk_id, name=name or f"VK {vk_id}", email=email, role=role, is_active=True)
    s.add(user)
    s.flush()
    record_event(
        s,
        actor=user,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"vk_id": vk_id, "role": role},
    )
    return user, True


@bp.post("/vk")
def login_vk():
    payload = get_payload()
    access_token = clean_str(payload.get("accessToken"))
    ip = request.remote_addr or "unknown"

    if not access_token:
        return json_error("Access token is required", 400)

    if _check_rate_limit(ip):
        return json_error("Too many login attempts. Please wait 5 minutes.", 429)

    _record_attempt(ip)

    try:
        vk_user = vk_client_from_config(current_app.config).get_current_user(
            access_token, email=clean_str(payload.get("email"))
        )
    except VKError as e:
        current_app.logger.warning("VK token verification failed (ip=%s request_id=%s): %s", ip, getattr(g, "request_id", None), e)
        return json_error("VK authentication failed", 401)

    try:
        s = db_session()
        user, created = find_or_create_vk_user(s, vk_id=vk_user.id, name=vk_user.full_name, email=vk_user.email)
        if not user.is_active:
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=str(user.id),
                reason="Account deactivated",
                metadata={"vk_id": vk_user.id},
            )
            s.commit()
            return json_error("Account is deactivated", 403)

        user.last_login_at = datetime.utcnow()
        session.clear()
        session["user_id"] = user.id
        ensure_csrf_token()
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        if created:
            current_app.logger.info("Created user id=%s vk_id=%s role=%s", user.id, user.vk_id, user.role)
        return jsonify(serialize_user(user))
    except Exception:
        current_app.logger.exception("VK login crashed (vk_id=%s request_id=%s)", vk_user.id, getattr(g, "request_id", None))
        raise


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        return json_error("Not authenticated", 401)
    data = serialize_user(user)
    data["permissions"] = sorted(permissions_for_role(user.role))
    return jsonify(data)


@bp.get("/csrf")
def csrf_token():
    return jsonify({"csrfToken": ensure_csrf_token()})


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"success": True})
