from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.stablecrm.db import db_session
from app.stablecrm.models import User
from app.stablecrm.modules.certificates.models import Certificate
from app.stablecrm.modules.certificates.service import (
    create_certificate,
    delete_certificate,
    list_certificates,
    serialize_certificate,
    update_certificate,
    validate_certificate_payload,
)
from app.stablecrm.rbac import require_permission
from app.stablecrm.utils import get_payload, json_error

bp = Blueprint("certificates", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/certificates")
@require_permission("certificates.view")
def certificates_list():
    s = db_session()
    status_filter = (request.args.get("status") or "").strip() or None
    return jsonify([serialize_certificate(c) for c in list_certificates(s, status=status_filter)])


@bp.get("/certificates/<int:certificate_id>")
@require_permission("certificates.view")
def certificate_detail(certificate_id: int):
    s = db_session()
    cert = s.get(Certificate, certificate_id)
    if not cert:
        return json_error("Certificate not found", 404)
    return jsonify(serialize_certificate(cert))


@bp.post("/certificates")
@require_permission("certificates.create")
def certificates_create():
    s = db_session()
    payload = get_payload()
    errors = validate_certificate_payload(payload)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        cert = create_certificate(s, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_certificate(cert)), 201


@bp.put("/certificates/<int:certificate_id>")
@require_permission("certificates.edit")
def certificates_update(certificate_id: int):
    s = db_session()
    cert = s.get(Certificate, certificate_id)
    if not cert:
        return json_error("Certificate not found", 404)

    payload = get_payload()
    errors = validate_certificate_payload(payload, partial=True)
    if errors:
        return json_error("Validation failed", 400, errors)

    try:
        update_certificate(s, cert, payload, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify(serialize_certificate(cert))


@bp.delete("/certificates/<int:certificate_id>")
@require_permission("certificates.delete")
def certificates_delete(certificate_id: int):
    s = db_session()
    cert = s.get(Certificate, certificate_id)
    if not cert:
        return json_error("Certificate not found", 404)

    try:
        delete_certificate(s, cert, _current_user())
    except ValueError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return "", 204
