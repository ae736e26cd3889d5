import json
from datetime import date, datetime, time, timedelta
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.stablecrm.models import AuditEvent, User

AUDIT_LIST_LIMIT = 200


def _request_fields() -> tuple[str | None, str | None]:
    # Scripts (release, seed) write events outside any request.
    if not has_request_context():
        return None, None
    return getattr(g, "request_id", None), request.remote_addr


def _encode_metadata(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    # Decimals and datetimes fall back to str; Cyrillic stays readable.
    return json.dumps(metadata, sort_keys=True, default=str, ensure_ascii=False)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Add an audit row to the caller's session. Nothing is committed here: the
    event lands together with the change it describes, or not at all.
    """
    rid, client_ip = _request_fields()
    ev = AuditEvent(
        request_id=request_id or rid,
        actor_user_id=actor.id if actor else None,
        actor_user_name=actor.name if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=_encode_metadata(metadata),
        client_ip=client_ip,
    )
    s.add(ev)
    return ev


def decode_metadata(ev: AuditEvent) -> Any:
    if not ev.metadata_json:
        return None
    try:
        return json.loads(ev.metadata_json)
    except ValueError:
        return ev.metadata_json


def find_events(
    s: Session,
    *,
    action: str | None = None,
    actor: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = AUDIT_LIST_LIMIT,
) -> list[AuditEvent]:
    """Newest events first. `action`/`actor` are substring matches, dates are inclusive days."""
    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor:
        q = q.filter(AuditEvent.actor_user_name.ilike(f"%{actor}%"))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
