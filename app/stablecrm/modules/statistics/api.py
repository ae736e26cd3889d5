from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request

from app.stablecrm.db import db_session
from app.stablecrm.modules.statistics.service import (
    dashboard_summary,
    horse_workload,
    instructor_workload,
    monthly_revenue,
    new_clients_count,
)
from app.stablecrm.rbac import require_permission
from app.stablecrm.utils import json_error, month_start, parse_datetime, parse_int, parse_range_end

bp = Blueprint("statistics", __name__)


def _period():
    """?startDate=&endDate=, defaulting to the current month so far."""
    now = datetime.utcnow()
    start = parse_datetime(request.args.get("startDate")) or month_start(now)
    end = parse_range_end(request.args.get("endDate")) or now
    return start, end


def _year_month():
    now = datetime.utcnow()
    year = parse_int(request.args.get("year"))
    month = parse_int(request.args.get("month"))
    if year is None:
        year = now.year
    if month is None:
        month = now.month
    if month < 1 or month > 12:
        raise ValueError("month must be 1-12")
    return year, month


@bp.get("/statistics/horses")
@require_permission("statistics.view")
def statistics_horses():
    try:
        start, end = _period()
    except ValueError:
        return json_error("startDate/endDate must be ISO dates", 400)
    return jsonify(horse_workload(db_session(), start, end))


@bp.get("/statistics/instructors")
@require_permission("statistics.view")
def statistics_instructors():
    try:
        start, end = _period()
    except ValueError:
        return json_error("startDate/endDate must be ISO dates", 400)
    return jsonify(instructor_workload(db_session(), start, end))


@bp.get("/statistics/revenue")
@require_permission("statistics.view")
def statistics_revenue():
    try:
        year, month = _year_month()
    except ValueError as e:
        return json_error(str(e), 400)
    revenue = monthly_revenue(db_session(), year, month)
    return jsonify({"year": year, "month": month, "revenue": float(revenue)})


@bp.get("/statistics/clients")
@require_permission("statistics.view")
def statistics_clients():
    try:
        year, month = _year_month()
    except ValueError as e:
        return json_error(str(e), 400)
    return jsonify({"year": year, "month": month, "newClients": new_clients_count(db_session(), year, month)})


@bp.get("/statistics/summary")
@require_permission("statistics.view")
def statistics_summary():
    return jsonify(dashboard_summary(db_session()))
