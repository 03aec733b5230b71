# Overview: Flask API routes for analytics; parses input and returns JSON responses.

"""
Analytics Routes

Read-only aggregates for the back-office dashboard. `month` query
parameters are 0-based (0 = January).
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..responses import error_response, internal_error
from ..services import analytics_service
from ..validation import ApiError, coerce_int


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")

MAX_TOP_CUSTOMERS = 50


def _optional_int(name: str, code: str):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    return coerce_int(raw, name, code=code)


def _month_args():
    return _optional_int("year", "INVALID_YEAR"), _optional_int("month", "INVALID_MONTH")


@analytics_bp.get("/dashboard")
@require_auth
def dashboard_route():
    try:
        year, month = _month_args()
        data = analytics_service.get_dashboard(year, month)
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Dashboard analytics failed")
        return internal_error("Failed to fetch dashboard analytics")
    return jsonify({"success": True, "data": data}), 200


@analytics_bp.get("/stock")
@require_auth
def stock_route():
    try:
        data = analytics_service.get_stock_levels()
    except Exception:
        current_app.logger.exception("Stock analytics failed")
        return internal_error("Failed to fetch stock levels")
    return jsonify({"success": True, "data": data}), 200


@analytics_bp.get("/sales")
@require_auth
def sales_route():
    period = request.args.get("period") or "week"
    try:
        data = analytics_service.get_sales_metrics(period)
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Sales analytics failed")
        return internal_error("Failed to fetch sales metrics")
    return jsonify({"success": True, "data": data}), 200


@analytics_bp.get("/write-offs")
@require_auth
def write_offs_route():
    try:
        data = analytics_service.get_write_off_summary()
    except Exception:
        current_app.logger.exception("Write-off analytics failed")
        return internal_error("Failed to fetch write-off summary")
    return jsonify({"success": True, "data": data}), 200


@analytics_bp.get("/customers/top")
@require_auth
def top_customers_route():
    try:
        limit = _optional_int("limit", "INVALID_LIMIT") or 10
        data = analytics_service.get_top_customers(max(1, min(limit, MAX_TOP_CUSTOMERS)))
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Top customers analytics failed")
        return internal_error("Failed to fetch top customers")
    return jsonify({"success": True, "data": data}), 200


@analytics_bp.get("/daily-sales")
@require_auth
def daily_sales_route():
    try:
        year, month = _month_args()
        data = analytics_service.get_daily_sales(year, month)
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Daily sales analytics failed")
        return internal_error("Failed to fetch daily sales")
    return jsonify({"success": True, "data": data}), 200
