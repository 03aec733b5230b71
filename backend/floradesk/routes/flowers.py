# Overview: Flask API routes for the flower catalog and variants; parses input and returns JSON responses.

"""
Catalog Routes

Reads are public (the storefront and the POS both show the catalog);
writes require a bearer token.
"""

from flask import Blueprint, request, jsonify

from ..decorators import require_auth
from ..responses import error_response
from ..services import flower_service
from ..validation import ApiError, NotFoundError


flowers_bp = Blueprint("flowers", __name__, url_prefix="/api/flowers")
variants_bp = Blueprint("variants", __name__, url_prefix="/api/variants")


def _payload() -> dict:
    """Accept both {data: {...}} and a bare object."""
    body = request.get_json(silent=True) or {}
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    return data


@flowers_bp.get("")
def list_flowers_route():
    flowers = flower_service.list_flowers(published_only=True, search=request.args.get("search"))
    return jsonify({"success": True, "data": [f.to_dict() for f in flowers]}), 200


@flowers_bp.get("/<document_id>")
def get_flower_route(document_id: str):
    try:
        flower = flower_service.get_flower(document_id)
        if not flower.is_published:
            raise NotFoundError("FLOWER_NOT_FOUND", f"Flower with id {document_id} not found")
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": flower.to_dict()}), 200


@flowers_bp.post("")
@require_auth
def create_flower_route():
    try:
        flower = flower_service.create_flower(_payload())
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": flower.to_dict()}), 201


@flowers_bp.put("/<document_id>")
@require_auth
def update_flower_route(document_id: str):
    try:
        flower = flower_service.update_flower(document_id, _payload())
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": flower.to_dict()}), 200


@flowers_bp.put("/<document_id>/safe-update")
@require_auth
def safe_update_route(document_id: str):
    try:
        flower = flower_service.safe_update(document_id, _payload())
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": flower.to_dict()}), 200


@flowers_bp.delete("/<document_id>")
@require_auth
def delete_flower_route(document_id: str):
    try:
        snapshot = flower_service.delete_flower(document_id)
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": snapshot}), 200


@variants_bp.put("/<document_id>")
@require_auth
def update_variant_route(document_id: str):
    try:
        variant = flower_service.update_variant(document_id, _payload())
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": variant.to_dict()}), 200
