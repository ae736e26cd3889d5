from __future__ import annotations

from typing import TYPE_CHECKING

from app.stablecrm.audit import record_event
from app.stablecrm.utils import clean_str, iso

from .models import Client

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.stablecrm.models import User


def serialize_client(client: Client) -> dict:
    return {
        "id": client.id,
        "name": client.name,
        "phone": client.phone,
        "email": client.email,
        "notes": client.notes,
        "createdAt": iso(client.created_at),
    }


def validate_client_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not clean_str(payload.get("name")):
            errors.append("Name is required.")
    email = clean_str(payload.get("email"))
    if email and "@" not in email:
        errors.append("Email address is invalid.")
    return errors


def list_clients(s: "Session") -> list[Client]:
    return s.query(Client).order_by(Client.created_at.desc(), Client.id.desc()).all()


def search_clients(s: "Session", query: str) -> list[Client]:
    """Case-insensitive substring match on name, phone or email."""
    like = f"%{query.strip()}%"
    return (
        s.query(Client)
        .filter(
            (Client.name.ilike(like))
            | (Client.phone.ilike(like))
            | (Client.email.ilike(like))
        )
        .order_by(Client.name.asc())
        .all()
    )


def create_client(s: "Session", payload: dict, user: "User") -> Client:
    client = Client(
        name=clean_str(payload.get("name")) or "",
        phone=clean_str(payload.get("phone")),
        email=clean_str(payload.get("email")),
        notes=clean_str(payload.get("notes")),
    )
    s.add(client)
    s.flush()

    record_event(
        s,
        actor=user,
        action="client.create",
        entity_type="Client",
        entity_id=str(client.id),
        metadata={"name": client.name},
    )
    return client


def update_client(s: "Session", client: Client, payload: dict, user: "User") -> Client:
    changes = {}

    if "name" in payload:
        new_name = clean_str(payload.get("name")) or client.name
        if new_name != client.name:
            changes["name"] = {"old": client.name, "new": new_name}
            client.name = new_name

    for key in ("phone", "email", "notes"):
        if key in payload:
            new_value = clean_str(payload.get(key))
            if new_value != getattr(client, key):
                changes[key] = {"old": getattr(client, key), "new": new_value}
                setattr(client, key, new_value)

    record_event(
        s,
        actor=user,
        action="client.edit",
        entity_type="Client",
        entity_id=str(client.id),
        metadata={"name": client.name, "changes": changes},
    )
    return client


def delete_client(s: "Session", client: Client, user: "User") -> None:
    """Hard delete. Raises ValueError while lessons, subscriptions or certificates reference the client."""
    from app.stablecrm.modules.certificates.models import Certificate
    from app.stablecrm.modules.lessons.models import Lesson
    from app.stablecrm.modules.subscriptions.models import Subscription

    for model, label in ((Lesson, "lessons"), (Subscription, "subscriptions"), (Certificate, "certificates")):
        if s.query(model.id).filter(model.client_id == client.id).first() is not None:
            raise ValueError(f"Client has {label} and cannot be deleted.")

    record_event(
        s,
        actor=user,
        action="client.delete",
        entity_type="Client",
        entity_id=str(client.id),
        metadata={"name": client.name},
    )
    s.delete(client)
    s.flush()
