# Overview: Flask API routes for daily shifts; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..responses import alert, error_response, internal_error
from ..services import shift_service
from ..validation import ApiError, coerce_int


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.get("/current")
@require_auth
def current_shift_route():
    try:
        shift, is_new = shift_service.get_current_shift()
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get current shift")
        return internal_error("An error occurred while getting current shift")
    return jsonify({"success": True, "data": shift.to_dict(), "isNew": is_new}), 201 if is_new else 200


@shifts_bp.post("/current/activity")
@require_auth
def add_activity_route():
    data = request.get_json(silent=True) or {}
    try:
        shift, idempotent = shift_service.add_activity(data.get("activity"))
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add shift activity")
        return internal_error("An error occurred while adding activity")

    body = {"success": True, "data": shift.to_dict()}
    if idempotent:
        body["idempotent"] = True
    return jsonify(body), 200


@shifts_bp.post("/close")
@require_auth
def close_shift_route():
    data = request.get_json(silent=True) or {}
    notes = data.get("notes") or None
    try:
        shift, outcome = shift_service.close_today(notes)
    except ApiError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return internal_error(
            "An error occurred while closing the shift",
            alert("error", "Помилка закриття зміни", "Сталася помилка при закритті зміни. Спробуйте пізніше."),
        )

    if outcome == "notes_updated":
        block = alert("success", "Нотатки збережено", "Нотатки до зміни успішно оновлено.")
    elif outcome == "already_closed":
        block = alert("info", "Зміна вже закрита", "Сьогоднішня зміна вже була закрита раніше.")
    else:
        count = len(shift.activities or [])
        block = alert("success", "Зміну закрито", f"Зміну успішно закрито. Записано {count} дій.")
    return jsonify({"success": True, "data": shift.to_dict(), "alert": block}), 200


@shifts_bp.get("")
@require_auth
def list_shifts_route():
    try:
        page = coerce_int(request.args.get("page", 1), "page", code="INVALID_PAGINATION")
        page_size = coerce_int(request.args.get("pageSize", 10), "pageSize", code="INVALID_PAGINATION")
        result = shift_service.list_shifts(page, page_size)
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, **result}), 200


@shifts_bp.get("/<document_id>")
@require_auth
def get_shift_route(document_id: str):
    try:
        shift = shift_service.get_shift(document_id)
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": shift.to_dict()}), 200
