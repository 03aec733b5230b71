# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..decorators import require_auth
from ..responses import error_response
from ..services import customer_service
from ..validation import ApiError


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    customers = customer_service.list_customers(request.args.get("search"))
    return jsonify({"success": True, "data": [c.to_dict() for c in customers]}), 200


@customers_bp.post("")
@require_auth
def create_customer_route():
    body = request.get_json(silent=True) or {}
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    try:
        customer = customer_service.create_customer(data)
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": customer.to_dict()}), 201


@customers_bp.get("/<document_id>")
@require_auth
def get_customer_route(document_id: str):
    try:
        customer = customer_service.get_customer(document_id)
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": customer.to_dict()}), 200


@customers_bp.delete("/<document_id>")
@require_auth
def delete_customer_route(document_id: str):
    try:
        snapshot = customer_service.delete_customer(document_id)
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": snapshot}), 200
