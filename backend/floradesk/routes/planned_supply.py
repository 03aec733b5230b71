# Overview: Flask API routes for supply planning (low stock, flower search); public read-only endpoints.

from flask import Blueprint, request, jsonify

from ..responses import error_response
from ..services import planned_supply_service
from ..validation import ApiError


planned_supply_bp = Blueprint("planned_supply", __name__, url_prefix="/api/planned-supply")


@planned_supply_bp.get("/low-stock")
def low_stock_route():
    try:
        threshold = planned_supply_service.parse_threshold(request.args.get("threshold"))
    except ApiError as e:
        return error_response(e)
    data = planned_supply_service.get_low_stock_variants(threshold)
    return jsonify({"success": True, "data": data, "threshold": threshold}), 200


@planned_supply_bp.get("/search")
def search_route():
    try:
        data = planned_supply_service.search_flowers(request.args.get("q"))
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": data}), 200


@planned_supply_bp.get("/all-flowers")
def all_flowers_route():
    return jsonify({"success": True, "data": planned_supply_service.get_all_flowers()}), 200
