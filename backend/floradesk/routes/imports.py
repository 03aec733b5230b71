# Overview: Flask API routes for supplier Excel imports; parses multipart input and returns JSON responses.

"""
Import Routes

POST /api/imports/excel takes a multipart form: `file` plus string fields
(dryRun, stockMode, awb, supplier, forceImport, rowOverrides (JSON),
costCalculationMode, fullCostParams (JSON), salePriceMarginPercent,
exchangeRate).
"""

import json

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..responses import error_response, internal_error
from ..services import import_service
from ..validation import ApiError, ValidationError, coerce_number, parse_bool


imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


def _json_field(name: str):
    raw = request.form.get(name)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        raise ValidationError("INVALID_INPUT", f"{name} must be valid JSON")


def _number_field(name: str):
    raw = request.form.get(name)
    if raw in (None, ""):
        return None
    return coerce_number(raw, name)


@imports_bp.post("/excel")
@require_auth
def import_excel_route():
    file = request.files.get("file")
    if file is None:
        return error_response(ApiError(
            "MISSING_FILE", "File is required. Please upload an Excel file (.xlsx)",
        ))

    content = file.read()
    filename = file.filename or "unknown"
    if not import_service.is_xlsx(content):
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "none"
        current_app.logger.warning("Rejected import %s: not an .xlsx file (first bytes %s)", filename, content[:8].hex())
        return error_response(ApiError(
            "INVALID_FORMAT",
            f"Invalid file format. Please use .xlsx files. Detected extension: {ext}, filename: {filename}",
        ))

    try:
        options = {
            "dryRun": parse_bool(request.form.get("dryRun")),
            "stockMode": request.form.get("stockMode") or None,
            "awb": request.form.get("awb") or None,
            "supplier": request.form.get("supplier") or None,
            "forceImport": parse_bool(request.form.get("forceImport")),
            "rowOverrides": _json_field("rowOverrides"),
            "costCalculationMode": request.form.get("costCalculationMode") or None,
            "fullCostParams": _json_field("fullCostParams"),
            "salePriceMarginPercent": _number_field("salePriceMarginPercent"),
            "exchangeRate": _number_field("exchangeRate"),
            "userId": f"{g.auth_realm}:{g.current_user_id}",
        }
        result = import_service.process_excel(content, filename, options)
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Import of %s failed", filename)
        return internal_error("An error occurred while importing the file")

    return jsonify({"success": True, "data": result}), 200


@imports_bp.post("/update-prices")
@require_auth
def update_prices_route():
    data = request.get_json(silent=True) or {}
    try:
        updated = import_service.update_prices(data.get("prices"))
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "updated": updated}), 200


@imports_bp.get("/<int:supply_id>")
@require_auth
def get_import_route(supply_id: int):
    try:
        supply = import_service.get_supply(supply_id)
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": supply.to_dict()}), 200
