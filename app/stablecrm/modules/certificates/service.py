from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.stablecrm.audit import record_event
from app.stablecrm.constants import CERTIFICATE_STATUSES
from app.stablecrm.utils import clean_str, iso, money, parse_datetime, parse_decimal, parse_int

from .models import Certificate

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.stablecrm.models import User


def serialize_certificate(cert: Certificate) -> dict:
    return {
        "id": cert.id,
        "number": cert.number,
        "clientId": cert.client_id,
        "clientName": cert.client.name if cert.client else None,
        "value": money(cert.value),
        "status": cert.status,
        "expiresAt": iso(cert.expires_at),
        "createdAt": iso(cert.created_at),
        "usedAt": iso(cert.used_at),
    }


def validate_certificate_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "number" in payload:
        if not clean_str(payload.get("number")):
            errors.append("Certificate number is required.")
    if not partial or "value" in payload:
        try:
            value = parse_decimal(payload.get("value"))
        except ValueError:
            value = None
        if value is None or value <= 0:
            errors.append("Value must be a positive amount.")
    status = payload.get("status")
    if status is not None and status not in CERTIFICATE_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(CERTIFICATE_STATUSES)}")
    if payload.get("expiresAt"):
        try:
            parse_datetime(payload.get("expiresAt"))
        except ValueError:
            errors.append("expiresAt must be an ISO date.")
    if payload.get("clientId") not in (None, ""):
        try:
            parse_int(payload.get("clientId"))
        except ValueError:
            errors.append("clientId must be an integer.")
    return errors


def is_certificate_usable(cert: Certificate, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    if cert.status != "active":
        return False
    return cert.expires_at is None or cert.expires_at > now


def list_certificates(s: "Session", *, status: str | None = None) -> list[Certificate]:
    q = s.query(Certificate)
    if status:
        q = q.filter(Certificate.status == status)
    return q.order_by(Certificate.created_at.desc(), Certificate.id.desc()).all()


def get_certificate_by_number(s: "Session", number: str) -> Certificate | None:
    return s.query(Certificate).filter(Certificate.number == number.strip()).one_or_none()


def _resolve_client_id(s: "Session", raw) -> int | None:
    from app.stablecrm.modules.clients.models import Client

    client_id = parse_int(raw)
    if client_id is not None and s.get(Client, client_id) is None:
        raise ValueError("Client not found.")
    return client_id


def create_certificate(s: "Session", payload: dict, user: "User") -> Certificate:
    number = clean_str(payload.get("number")) or ""
    if get_certificate_by_number(s, number):
        raise ValueError(f"Certificate number {number} already exists.")

    cert = Certificate(
        number=number,
        client_id=_resolve_client_id(s, payload.get("clientId")),
        value=parse_decimal(payload.get("value")),
        status=payload.get("status") or "active",
        expires_at=parse_datetime(payload.get("expiresAt")),
    )
    s.add(cert)
    s.flush()

    record_event(
        s,
        actor=user,
        action="certificate.create",
        entity_type="Certificate",
        entity_id=str(cert.id),
        metadata={"number": cert.number, "value": money(cert.value)},
    )
    return cert


def update_certificate(s: "Session", cert: Certificate, payload: dict, user: "User") -> Certificate:
    changes = {}

    if "number" in payload:
        new_number = clean_str(payload.get("number")) or cert.number
        if new_number != cert.number:
            existing = get_certificate_by_number(s, new_number)
            if existing and existing.id != cert.id:
                raise ValueError(f"Certificate number {new_number} already exists.")
            changes["number"] = {"old": cert.number, "new": new_number}
            cert.number = new_number

    if "clientId" in payload:
        new_client_id = _resolve_client_id(s, payload.get("clientId"))
        if new_client_id != cert.client_id:
            changes["client_id"] = {"old": cert.client_id, "new": new_client_id}
            cert.client_id = new_client_id

    if "value" in payload:
        new_value = parse_decimal(payload.get("value"))
        if new_value is not None and new_value != cert.value:
            changes["value"] = {"old": money(cert.value), "new": money(new_value)}
            cert.value = new_value

    if "status" in payload and payload.get("status") and payload["status"] != cert.status:
        changes["status"] = {"old": cert.status, "new": payload["status"]}
        cert.status = payload["status"]
        if cert.status == "used" and cert.used_at is None:
            cert.used_at = datetime.utcnow()
        elif cert.status == "active":
            cert.used_at = None

    if "expiresAt" in payload:
        new_expires = parse_datetime(payload.get("expiresAt"))
        if new_expires != cert.expires_at:
            changes["expires_at"] = {"old": iso(cert.expires_at), "new": iso(new_expires)}
            cert.expires_at = new_expires

    record_event(
        s,
        actor=user,
        action="certificate.edit",
        entity_type="Certificate",
        entity_id=str(cert.id),
        metadata={"number": cert.number, "changes": changes},
    )
    return cert


def redeem_certificate(s: "Session", cert: Certificate, user: "User", *, lesson_id: int) -> None:
    """Mark an active certificate as used by a completed lesson."""
    cert.status = "used"
    cert.used_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="certificate.redeem",
        entity_type="Certificate",
        entity_id=str(cert.id),
        metadata={"number": cert.number, "lesson_id": lesson_id},
    )


def delete_certificate(s: "Session", cert: Certificate, user: "User") -> None:
    from app.stablecrm.modules.lessons.models import Lesson

    if s.query(Lesson.id).filter(Lesson.certificate_id == cert.id).first() is not None:
        raise ValueError("Certificate is referenced by lessons and cannot be deleted.")

    record_event(
        s,
        actor=user,
        action="certificate.delete",
        entity_type="Certificate",
        entity_id=str(cert.id),
        metadata={"number": cert.number},
    )
    s.delete(cert)
    s.flush()
