from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from app.stablecrm.audit import record_event
from app.stablecrm.utils import clean_str, iso, parse_bool

from .models import LandingContent

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.stablecrm.models import User

_SECTION_RE = re.compile(r"^[a-z0-9_-]{1,64}$")


def serialize_landing_content(block: LandingContent) -> dict:
    return {
        "id": block.id,
        "section": block.section,
        "title": block.title,
        "content": block.content,
        "imageUrl": block.image_url,
        "isVisible": block.is_visible,
        "updatedAt": iso(block.updated_at),
    }


def validate_landing_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "section" in payload:
        section = clean_str(payload.get("section"))
        if not section:
            errors.append("Section is required.")
        elif not _SECTION_RE.match(section):
            errors.append("Section must be lowercase letters, digits, '-' or '_'.")
    image_url = clean_str(payload.get("imageUrl"))
    if image_url and not image_url.startswith(("http://", "https://", "/")):
        errors.append("imageUrl must be an http(s) URL or an absolute path.")
    return errors


def list_landing_content(s: "Session", *, include_hidden: bool = False) -> list[LandingContent]:
    q = s.query(LandingContent)
    if not include_hidden:
        q = q.filter(LandingContent.is_visible.is_(True))
    return q.order_by(LandingContent.section.asc()).all()


def get_by_section(s: "Session", section: str) -> LandingContent | None:
    return s.query(LandingContent).filter(LandingContent.section == section).one_or_none()


def create_landing_content(s: "Session", payload: dict, user: "User | None") -> LandingContent:
    section = clean_str(payload.get("section")) or ""
    if get_by_section(s, section):
        raise ValueError(f"Section {section} already exists.")
    block = LandingContent(
        section=section,
        title=clean_str(payload.get("title")),
        content=clean_str(payload.get("content")),
        image_url=clean_str(payload.get("imageUrl")),
        is_visible=parse_bool(payload.get("isVisible", True)),
        updated_at=datetime.utcnow(),
    )
    s.add(block)
    s.flush()
    record_event(
        s,
        actor=user,
        action="landing.create",
        entity_type="LandingContent",
        entity_id=str(block.id),
        metadata={"section": section},
    )
    return block


def update_landing_content(s: "Session", block: LandingContent, payload: dict, user: "User") -> LandingContent:
    changes = {}

    if "section" in payload:
        new_section = clean_str(payload.get("section")) or block.section
        if new_section != block.section:
            existing = get_by_section(s, new_section)
            if existing and existing.id != block.id:
                raise ValueError(f"Section {new_section} already exists.")
            changes["section"] = {"old": block.section, "new": new_section}
            block.section = new_section

    for key, attr in (("title", "title"), ("content", "content"), ("imageUrl", "image_url")):
        if key in payload:
            new_value = clean_str(payload.get(key))
            if new_value != getattr(block, attr):
                # Full text can be long; keep only that it changed.
                changes[attr] = "changed" if attr == "content" else {"old": getattr(block, attr), "new": new_value}
                setattr(block, attr, new_value)

    if "isVisible" in payload:
        new_visible = parse_bool(payload.get("isVisible"))
        if new_visible != block.is_visible:
            changes["is_visible"] = {"old": block.is_visible, "new": new_visible}
            block.is_visible = new_visible

    block.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="landing.edit",
        entity_type="LandingContent",
        entity_id=str(block.id),
        metadata={"section": block.section, "changes": changes},
    )
    return block
