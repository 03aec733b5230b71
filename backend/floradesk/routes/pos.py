# Overview: Flask API routes for POS operations (sales, write-offs, payments, returns, balances).

"""
POS Routes

Every successful or failed mutation carries an `alert` block that the
back-office UI shows as a toast.
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth
from ..responses import alert, error_response, internal_error
from ..services import pos_service
from ..validation import ApiError, coerce_int


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


def _internal(message: str, user_message: str):
    return internal_error(message, alert("error", "Внутрішня помилка", user_message))


@pos_bp.post("/sales")
@require_auth
def create_sale_route():
    data = request.get_json(silent=True) or {}
    try:
        result = pos_service.create_sale(data)
    except ApiError as e:
        return error_response(e, alert("error", "Помилка створення замовлення", e.message, e.details))
    except Exception:
        current_app.logger.exception("POS create sale failed")
        return _internal(
            "An error occurred while processing the sale",
            "Сталася помилка при обробці замовлення. Спробуйте пізніше.",
        )

    idempotent = result["idempotent"]
    body = {
        **result,
        "alert": alert(
            "success",
            "Замовлення вже існує" if idempotent else "Замовлення створено",
            "Транзакція з цим operationId вже була створена раніше"
            if idempotent else "Замовлення успішно оформлено. Склад оновлено.",
        ),
    }
    return jsonify(body), 200 if idempotent else 201


@pos_bp.post("/write-offs")
@require_auth
def create_write_off_route():
    data = request.get_json(silent=True) or {}
    try:
        result = pos_service.create_write_off(data)
    except ApiError as e:
        return error_response(e, alert("error", "Помилка списання", e.message, e.details))
    except Exception:
        current_app.logger.exception("POS write-off failed")
        return _internal(
            "An error occurred while processing the write-off",
            "Сталася помилка при списанні товару. Спробуйте пізніше.",
        )

    idempotent = result["idempotent"]
    body = {
        **result,
        "alert": alert(
            "success",
            "Списання вже існує" if idempotent else "Товар списано",
            "Списання з цим operationId вже було створено раніше"
            if idempotent else f"Товар успішно списано. Склад зменшено на {data.get('qty')} шт.",
        ),
    }
    return jsonify(body), 200 if idempotent else 201


@pos_bp.put("/transactions/<document_id>/confirm-payment")
@require_auth
def confirm_payment_route(document_id: str):
    try:
        result = pos_service.confirm_payment(document_id)
    except ApiError as e:
        return error_response(e, alert("error", "Помилка підтвердження оплати", e.message))
    except Exception:
        current_app.logger.exception("POS confirm payment failed")
        return _internal(
            "An error occurred while confirming the payment",
            "Сталася помилка при підтвердженні оплати. Спробуйте пізніше.",
        )

    idempotent = result["idempotent"]
    body = {
        **result,
        "alert": alert(
            "success",
            "Вже оплачено" if idempotent else "Оплату підтверджено",
            "Ця транзакція вже була позначена як оплачена"
            if idempotent else "Оплату успішно підтверджено. Статистику клієнта оновлено.",
        ),
    }
    return jsonify(body), 200


@pos_bp.post("/transactions/<document_id>/return")
@require_auth
def return_sale_route(document_id: str):
    data = request.get_json(silent=True) or {}
    try:
        result = pos_service.return_sale(document_id, data)
    except ApiError as e:
        return error_response(e, alert("error", "Помилка повернення", e.message, e.details))
    except Exception:
        current_app.logger.exception("POS return failed")
        return _internal(
            "An error occurred while processing the return",
            "Сталася помилка при поверненні замовлення. Спробуйте пізніше.",
        )

    idempotent = result["idempotent"]
    body = {
        **result,
        "alert": alert(
            "success",
            "Повернення вже оформлено" if idempotent else "Замовлення повернено",
            "Це замовлення вже було повернено раніше"
            if idempotent else "Товар повернено на склад. Баланс клієнта оновлено.",
        ),
    }
    return jsonify(body), 200 if idempotent else 201


@pos_bp.post("/sync-balances")
@require_auth
def sync_balances_route():
    try:
        result = pos_service.sync_balances()
    except ApiError as e:
        return error_response(e, alert("error", "Помилка синхронізації", e.message))
    except Exception:
        current_app.logger.exception("POS balance sync failed")
        return _internal(
            "An error occurred while syncing balances",
            "Сталася помилка при синхронізації балансів. Спробуйте пізніше.",
        )

    return jsonify({
        **result,
        "alert": alert("success", "Баланси синхронізовано", f"Оновлено балансів: {result['updated']}"),
    }), 200


@pos_bp.put("/customers/<document_id>/balance")
@require_auth
def set_balance_route(document_id: str):
    data = request.get_json(silent=True) or {}
    if data.get("balance") is None:
        return error_response(ApiError("MISSING_BALANCE", "balance is required"))
    try:
        customer = pos_service.set_customer_balance(document_id, data["balance"])
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, "data": customer.to_dict()}), 200


@pos_bp.get("/transactions")
@require_auth
def list_transactions_route():
    try:
        page = coerce_int(request.args.get("page", 1), "page", code="INVALID_PAGINATION")
        page_size = coerce_int(request.args.get("pageSize", 25), "pageSize", code="INVALID_PAGINATION")
        result = pos_service.list_transactions(
            type_=request.args.get("type") or None,
            customer_id=request.args.get("customerId") or None,
            payment_status=request.args.get("paymentStatus") or None,
            page=page,
            page_size=page_size,
        )
    except ApiError as e:
        return error_response(e)
    return jsonify({"success": True, **result}), 200
