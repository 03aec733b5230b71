# Overview: JSON envelope helpers shared by API routes.

from __future__ import annotations

from flask import jsonify

from .validation import ApiError


def alert(type_: str, title: str, message: str, details=None) -> dict:
    """User-facing notification block rendered by the back-office UI."""
    block = {"type": type_, "title": title, "message": message}
    if details is not None:
        block["details"] = details
    return block


def error_response(err: ApiError, alert_block: dict | None = None):
    body = err.to_dict()
    if alert_block is not None:
        body["alert"] = alert_block
    return jsonify(body), err.status_code


def internal_error(message: str = "Internal server error", alert_block: dict | None = None):
    body = {"success": False, "error": {"code": "INTERNAL_ERROR", "message": message}}
    if alert_block is not None:
        body["alert"] = alert_block
    return jsonify(body), 500
