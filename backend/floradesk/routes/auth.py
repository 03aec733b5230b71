# Overview: Flask API routes for authentication; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..responses import error_response
from ..services import auth_service
from ..services.auth_service import AuthError


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    data = request.get_json(silent=True) or {}
    try:
        result = auth_service.login(data.get("email"), data.get("password"))
    except AuthError as e:
        return error_response(e)
    return jsonify({"success": True, "data": result}), 200
