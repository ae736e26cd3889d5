"""
iCalendar (RFC 5545) rendering of lessons for calendar subscriptions.

Times are written in UTC (`...Z`), which every calendar app converts to the
viewer's zone; X-WR-TIMEZONE only hints the stable's own zone.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from app.stablecrm.constants import (
    CALENDAR_TIMEZONE,
    CALENDAR_UID_DOMAIN,
    DEFAULT_LESSON_DURATION,
    LESSON_STATUS_LABELS,
    LESSON_TYPE_LABELS,
    STABLE_NAME,
)
from app.stablecrm.utils import money

from .models import Lesson

CRLF = "\r\n"
FEED_PATH = "/api/calendar/lessons.ics"


def format_ical_datetime(dt: datetime) -> str:
    return dt.strftime("%Y%m%dT%H%M%SZ")


def escape_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def fold_line(line: str) -> str:
    """Split a content line into 75-octet chunks joined by CRLF + space."""
    raw = line.encode("utf-8")
    if len(raw) <= 75:
        return line
    parts: list[str] = []
    current = ""
    size = 0
    limit = 75
    for ch in line:
        ch_len = len(ch.encode("utf-8"))
        if size + ch_len > limit:
            parts.append(current)
            current = ""
            size = 0
            limit = 74  # continuation lines start with a space
        current += ch
        size += ch_len
    parts.append(current)
    return (CRLF + " ").join(parts)


def _lesson_description(lesson: Lesson) -> str:
    instructors = ", ".join(link.instructor.name for link in lesson.instructor_links) or "Не назначен"
    horses = ", ".join(link.horse.nickname for link in lesson.horse_links) or "Не назначена"
    type_label = LESSON_TYPE_LABELS.get(lesson.type, lesson.type)
    lines = [
        f"Тип занятия: {type_label}",
        f"Клиент: {lesson.client.name}",
        f"Телефон: {lesson.client.phone or ''}",
        f"Инструктор: {instructors}",
        f"Лошадь: {horses}",
        f"Стоимость: {money(lesson.cost)} ₽",
        f"Статус: {LESSON_STATUS_LABELS.get(lesson.status, lesson.status)}",
        "Оплачено: Да" if lesson.is_paid else "Оплачено: Нет",
    ]
    if lesson.notes:
        lines.append(f"Заметки: {lesson.notes}")
    return "\n".join(lines)


def _event_lines(lesson: Lesson, dtstamp: str) -> list[str]:
    start = lesson.date
    end = start + timedelta(minutes=lesson.duration or DEFAULT_LESSON_DURATION)
    type_label = LESSON_TYPE_LABELS.get(lesson.type, lesson.type)
    last_modified = format_ical_datetime(lesson.created_at) if lesson.created_at else dtstamp
    return [
        "BEGIN:VEVENT",
        f"UID:lesson-{lesson.id}@{CALENDAR_UID_DOMAIN}",
        f"DTSTAMP:{dtstamp}",
        f"DTSTART:{format_ical_datetime(start)}",
        f"DTEND:{format_ical_datetime(end)}",
        f"SUMMARY:{escape_text(f'{type_label} - {lesson.client.name}')}",
        f"DESCRIPTION:{escape_text(_lesson_description(lesson))}",
        f"LOCATION:{escape_text(f'Конюшня {STABLE_NAME}')}",
        f"LAST-MODIFIED:{last_modified}",
        f"STATUS:{'CANCELLED' if lesson.status == 'cancelled' else 'CONFIRMED'}",
        f"TRANSP:{'TRANSPARENT' if lesson.status == 'completed' else 'OPAQUE'}",
        "CLASS:PUBLIC",
        "END:VEVENT",
    ]


def generate_ical_feed(lessons: Iterable[Lesson], now: datetime | None = None) -> str:
    dtstamp = format_ical_datetime(now or datetime.utcnow())
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:-//{STABLE_NAME}//Календарь занятий//RU",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_text(f'Занятия - {STABLE_NAME}')}",
        f"X-WR-CALDESC:{escape_text(f'Календарь занятий конюшни {STABLE_NAME}')}",
        f"X-WR-TIMEZONE:{CALENDAR_TIMEZONE}",
        "REFRESH-INTERVAL;VALUE=DURATION:PT1H",
        "X-PUBLISHED-TTL:PT1H",
    ]
    for lesson in lessons:
        lines.extend(_event_lines(lesson, dtstamp))
    lines.append("END:VCALENDAR")
    return CRLF.join(fold_line(line) for line in lines) + CRLF


def feed_links(base_url: str, token: str | None = None) -> dict:
    """Subscription URLs for calendar apps (webcal:// and plain https)."""
    base = base_url.rstrip("/")
    query = f"?token={token}" if token else ""
    host_part = base.split("://", 1)[1] if "://" in base else base
    return {
        "webcalUrl": f"webcal://{host_part}{FEED_PATH}{query}",
        "httpsUrl": f"{base}{FEED_PATH}{query}",
    }
