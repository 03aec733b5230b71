# Overview: Flask API routes for the USD exchange rate; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..responses import error_response
from ..services import currency_service
from ..validation import ApiError


currency_bp = Blueprint("currency", __name__, url_prefix="/api/currency")


@currency_bp.get("/usd")
def usd_rate_route():
    try:
        info = currency_service.get_usd_rate_info()
    except Exception:
        current_app.logger.exception("USD rate lookup failed")
        return error_response(ApiError("CURRENCY_ERROR", "Failed to fetch exchange rate", status_code=500))
    return jsonify({"success": True, "data": info}), 200


@currency_bp.put("/usd/manual")
@require_auth
def set_manual_rate_route():
    data = request.get_json(silent=True) or {}
    if data.get("rate") is None:
        return error_response(ApiError("INVALID_RATE", "rate is required"))
    try:
        manual = currency_service.set_manual_usd_rate(data["rate"])
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": manual}), 200


@currency_bp.delete("/usd/manual")
@require_auth
def clear_manual_rate_route():
    currency_service.set_manual_usd_rate(None)
    return jsonify({"success": True, "data": currency_service.get_usd_rate_info()}), 200
