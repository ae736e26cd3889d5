from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify

from app.stablecrm.constants import ROLE_ADMINISTRATOR, ROLE_INSTRUCTOR, ROLE_OBSERVER
from app.stablecrm.models import User

_VIEW_PERMISSIONS = frozenset(
    {
        "horses.view",
        "instructors.view",
        "clients.view",
        "certificates.view",
        "subscriptions.view",
        "lessons.view",
        "statistics.view",
        "calendar.view",
    }
)

_INSTRUCTOR_PERMISSIONS = _VIEW_PERMISSIONS | {
    "horses.create",
    "horses.edit",
    "clients.create",
    "clients.edit",
    "certificates.create",
    "certificates.edit",
    "subscriptions.create",
    "subscriptions.edit",
    "lessons.create",
    "lessons.edit",
    "lessons.delete",
}

_ADMINISTRATOR_PERMISSIONS = _INSTRUCTOR_PERMISSIONS | {
    "horses.delete",
    "instructors.create",
    "instructors.edit",
    "instructors.delete",
    "clients.delete",
    "certificates.delete",
    "users.view",
    "users.edit",
    "landing.edit",
    "audit.view",
    "admin.diagnostics",
}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    ROLE_OBSERVER: _VIEW_PERMISSIONS,
    ROLE_INSTRUCTOR: frozenset(_INSTRUCTOR_PERMISSIONS),
    ROLE_ADMINISTRATOR: frozenset(_ADMINISTRATOR_PERMISSIONS),
}


def permissions_for_role(role: str | None) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in permissions_for_role(user.role)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 so the frontend can show the login button.
            if not user or not user.is_active:
                return jsonify({"error": "Authentication required"}), 401
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
