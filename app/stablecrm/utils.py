from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import jsonify, request


def json_error(message: str, status: int, details: list[str] | None = None):
    """Uniform JSON error response used by every API blueprint."""
    body: dict[str, Any] = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def get_payload() -> dict:
    """Request JSON body as a dict (empty dict when absent or not an object)."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD (a full ISO datetime is accepted and truncated)."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    if len(s) > 10:
        return parse_datetime(s).date()  # type: ignore[union-attr]
    return date.fromisoformat(s)


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse an ISO 8601 datetime as sent by the frontend (`Date.toISOString()`).
    Aware values are converted to naive UTC; date-only strings become midnight.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        if len(s) == 10:
            return datetime.combine(date.fromisoformat(s), time.min)
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = (dt - dt.utcoffset()).replace(tzinfo=None)  # type: ignore[operator]
    return dt


def parse_range_end(value: Any) -> datetime | None:
    """End of an inclusive range: a bare date covers the whole day."""
    if value is None:
        return None
    s = str(value).strip()
    if len(s) == 10:
        return datetime.combine(date.fromisoformat(s), time.max)
    return parse_datetime(s)


def parse_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value).strip()).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")


def parse_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid integer: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer: {value!r}")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_id_list(value: Any) -> list[int]:
    """List of integer ids; duplicates dropped, order kept."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError("Expected a list of ids.")
    out: list[int] = []
    for raw in value:
        i = parse_int(raw)
        if i is not None and i not in out:
            out.append(i)
    return out


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar-month arithmetic, clamping the day (Jan 31 + 1 month → Feb 28/29)."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """[first instant, last instant] of a calendar month."""
    if month < 1 or month > 12:
        raise ValueError("month must be 1-12")
    start = datetime(year, month, 1)
    last_day = calendar.monthrange(year, month)[1]
    end = datetime.combine(date(year, month, last_day), time.max)
    return start, end


def month_start(now: datetime | None = None) -> datetime:
    now = now or datetime.utcnow()
    return datetime(now.year, now.month, 1)


def day_bounds(d: date) -> tuple[datetime, datetime]:
    return datetime.combine(d, time.min), datetime.combine(d + timedelta(days=1), time.min)


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def money(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return f"{Decimal(value):.2f}"
