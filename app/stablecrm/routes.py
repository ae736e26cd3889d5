from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from app.stablecrm.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    return jsonify({"ok": True})


@bp.get("/healthz")
def healthz():
    """Liveness: the process answers. Never touches the database."""
    return "ok", 200


@bp.get("/readyz")
def readyz():
    """Readiness: 503 until the database accepts queries."""
    try:
        db_session().execute(text("SELECT 1"))
    except Exception as e:
        current_app.logger.warning("Readiness check failed: %s", e)
        return jsonify({"ok": False, "database": "unavailable"}), 503
    return jsonify({"ok": True, "database": "ok"})
