# Overview: Service-layer operations for POS; sales, write-offs, payments, returns and balances.

"""
POS Transaction Service

WHY: Every stock movement made at the counter goes through here so that
stock, customer statistics and balances stay consistent with the
transaction ledger.

DESIGN PRINCIPLES:
- Idempotent: the client generates an operationId per submit; a repeated
  submit returns the stored transaction and moves no stock
- Guarded decrement: stock is reduced with UPDATE ... WHERE stock >= qty;
  a zero-row update means someone else sold the stock first, and the whole
  operation is rolled back (no partial sale)
- Paid sales feed total_spent / order_count; unpaid sales feed balance
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from ..extensions import db
from ..models import Customer, Transaction, Variant
from ..models.transactions import WRITE_OFF_REASONS
from ..time_utils import utcnow
from ..validation import ApiError, coerce_int, coerce_number, is_blank, round_half_up, ValidationError
from .concurrency import decrement_stock, lock_for_update, restock, run_with_retry
from .flower_service import find_variant
from .analytics_service import invalidate_analytics_cache


class PosError(ApiError):
    """Raised for POS operation errors (400 unless stated otherwise)."""
    pass


SALE_PAYMENT_STATUSES = ("pending", "paid", "expected")
UNPAID_STATUSES = ("pending", "expected")


# =============================================================================
# HELPERS
# =============================================================================

def _find_by_operation_id(operation_id: str) -> Transaction | None:
    return db.session.query(Transaction).filter_by(operation_id=operation_id).first()


def _find_customer(customer_ref) -> Customer | None:
    customer = db.session.query(Customer).filter_by(document_id=str(customer_ref)).first()
    if customer is None and str(customer_ref).isdigit():
        customer = db.session.get(Customer, int(customer_ref))
    return customer


def _record_paid_sale(customer: Customer | None, amount: float) -> None:
    if customer is None:
        return
    customer.order_count = (customer.order_count or 0) + 1
    customer.total_spent = round((customer.total_spent or 0) + amount, 2)


def _validate_sale_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise PosError("MISSING_ITEMS", "items array is required and must not be empty")

    cleaned = []
    for index, item in enumerate(items):
        missing = (
            not isinstance(item, dict)
            or is_blank(item.get("flowerSlug"))
            or item.get("length") in (None, "")
            or item.get("qty") in (None, "", 0)
            or item.get("price") in (None, "")
            or is_blank(item.get("name"))
        )
        if missing:
            raise PosError(
                "INVALID_ITEM",
                f"Item at index {index} is missing required fields (flowerSlug, length, qty, price, name)",
            )
        qty = coerce_int(item["qty"], f"items[{index}].qty", code="INVALID_ITEM")
        price = coerce_number(item["price"], f"items[{index}].price", code="INVALID_ITEM")
        if qty <= 0 or price < 0:
            raise PosError("INVALID_ITEM", f"Item at index {index} must have a positive qty and a non-negative price")
        cleaned.append({
            "flowerSlug": str(item["flowerSlug"]).strip(),
            "length": coerce_int(item["length"], f"items[{index}].length", code="INVALID_ITEM"),
            "qty": qty,
            "price": price,
            "name": str(item["name"]).strip(),
        })
    return cleaned


# =============================================================================
# SALES
# =============================================================================

def create_sale(payload: dict) -> dict:
    """
    Create a sale and decrement stock for every item.

    Args:
        payload: {operationId, customerId, items: [{flowerSlug, length, qty,
                  price, name}], discount?, notes?, paymentStatus?}

    Returns:
        {"success", "idempotent", "data": transaction, "stockUpdates"?}

    Raises:
        PosError: validation (400), CUSTOMER_NOT_FOUND (400),
        INSUFFICIENT_STOCK (409), CONCURRENT_MODIFICATION (409)
    """
    operation_id = payload.get("operationId")
    if is_blank(operation_id):
        raise PosError("MISSING_OPERATION_ID", "operationId is required for idempotency")
    if is_blank(payload.get("customerId")):
        raise PosError("MISSING_CUSTOMER_ID", "customerId is required")
    items = _validate_sale_items(payload.get("items"))

    payment_status = payload.get("paymentStatus") or "pending"
    if payment_status not in SALE_PAYMENT_STATUSES:
        raise PosError(
            "INVALID_PAYMENT_STATUS",
            f"paymentStatus must be one of: {', '.join(SALE_PAYMENT_STATUSES)}",
        )
    discount = coerce_number(payload.get("discount") or 0, "discount")

    existing = _find_by_operation_id(operation_id)
    if existing:
        return {
            "success": True,
            "idempotent": True,
            "data": existing.to_dict(),
            "message": "Transaction already exists with this operationId",
        }

    customer_ref = payload["customerId"]
    customer = _find_customer(customer_ref)
    if customer is None:
        raise PosError("CUSTOMER_NOT_FOUND", f"Customer with id {customer_ref} not found")
    customer_id = customer.id

    # Pre-check, summing quantities of repeated lines for the same variant
    requested: "OrderedDict[tuple, dict]" = OrderedDict()
    for item in items:
        key = (item["flowerSlug"], item["length"])
        entry = requested.setdefault(key, {"qty": 0, "name": item["name"]})
        entry["qty"] += item["qty"]

    shortages = []
    for (flower_slug, length), entry in requested.items():
        variant = find_variant(flower_slug, length)
        available = variant.stock if variant else 0
        if available < entry["qty"]:
            shortages.append({
                "flowerSlug": flower_slug,
                "length": length,
                "requested": entry["qty"],
                "available": available,
                "name": entry["name"],
            })
    if shortages:
        raise PosError("INSUFFICIENT_STOCK", "Not enough stock for some items", status_code=409, details=shortages)

    def _op():
        # Another submit with the same operationId may have won the race
        duplicate = _find_by_operation_id(operation_id)
        if duplicate:
            return {
                "success": True,
                "idempotent": True,
                "data": duplicate.to_dict(),
                "message": "Transaction already exists with this operationId",
            }

        stock_updates = []
        for item in items:
            variant = find_variant(item["flowerSlug"], item["length"])
            if variant is None or not decrement_stock(variant.id, item["qty"]):
                db.session.rollback()
                raise PosError(
                    "CONCURRENT_MODIFICATION",
                    f"Товар \"{item['name']}\" було змінено іншим користувачем. "
                    "Оновіть сторінку та спробуйте знову.",
                    status_code=409,
                    details={"flowerSlug": item["flowerSlug"], "length": item["length"], "name": item["name"]},
                )
            stock_updates.append({
                "flowerSlug": item["flowerSlug"],
                "length": item["length"],
                "decremented": item["qty"],
            })

        gross = sum(item["price"] * item["qty"] for item in items)
        amount = round_half_up(gross - discount)
        buyer = db.session.get(Customer, customer_id)
        now = utcnow()

        trx = Transaction(
            date=now,
            type="sale",
            operation_id=operation_id,
            payment_status=payment_status,
            amount=amount,
            items=[
                {**item, "subtotal": round(item["price"] * item["qty"], 2)}
                for item in items
            ],
            customer=buyer,
            notes=payload.get("notes"),
        )
        if payment_status == "paid":
            trx.paid_amount = amount
            trx.payment_date = now
            _record_paid_sale(buyer, amount)

        db.session.add(trx)
        db.session.commit()
        return {"success": True, "idempotent": False, "data": trx.to_dict(), "stockUpdates": stock_updates}

    result = run_with_retry(_op)
    if not result["idempotent"]:
        current_app.logger.info(
            "Sale %s created: customer=%s amount=%s items=%s",
            result["data"]["documentId"], customer_id, result["data"]["amount"], len(items),
        )
        invalidate_analytics_cache()
    return result


# =============================================================================
# WRITE-OFFS
# =============================================================================

def create_write_off(payload: dict) -> dict:
    """
    Write off damaged / expired stock of one variant.

    Args:
        payload: {operationId, flowerSlug, length, qty, reason, notes?}

    Raises:
        PosError: validation (400), VARIANT_NOT_FOUND (400),
        INSUFFICIENT_STOCK (409), CONCURRENT_MODIFICATION (409)
    """
    operation_id = payload.get("operationId")
    if is_blank(operation_id):
        raise PosError("MISSING_OPERATION_ID", "operationId is required for idempotency")
    if is_blank(payload.get("flowerSlug")) or payload.get("length") in (None, "") or payload.get("qty") in (None, "", 0):
        raise PosError("MISSING_FIELDS", "flowerSlug, length, and qty are required")
    reason = payload.get("reason")
    if is_blank(reason):
        raise PosError("MISSING_REASON", "reason is required (damage, expiry, adjustment, other)")
    if reason not in WRITE_OFF_REASONS:
        raise PosError("INVALID_REASON", "reason must be one of: damage, expiry, adjustment, other")

    flower_slug = str(payload["flowerSlug"]).strip()
    length = coerce_int(payload["length"], "length", code="MISSING_FIELDS")
    qty = coerce_int(payload["qty"], "qty", code="MISSING_FIELDS")
    if qty <= 0:
        raise PosError("MISSING_FIELDS", "qty must be a positive integer")

    existing = _find_by_operation_id(operation_id)
    if existing:
        return {
            "success": True,
            "idempotent": True,
            "data": existing.to_dict(),
            "message": "Transaction already exists with this operationId",
        }

    variant = find_variant(flower_slug, length)
    if variant is None:
        raise PosError("VARIANT_NOT_FOUND", f"Variant not found for {flower_slug} with length {length}cm")
    if variant.stock < qty:
        raise PosError(
            "INSUFFICIENT_STOCK",
            f"Cannot write off {qty} items. Only {variant.stock} available.",
            status_code=409,
            details={"flowerSlug": flower_slug, "length": length, "requested": qty, "available": variant.stock},
        )
    variant_id = variant.id
    unit_price = variant.price or 0
    flower_name = variant.flower.name or flower_slug

    def _op():
        duplicate = _find_by_operation_id(operation_id)
        if duplicate:
            return {"success": True, "idempotent": True, "data": duplicate.to_dict()}

        if not decrement_stock(variant_id, qty):
            db.session.rollback()
            raise PosError(
                "CONCURRENT_MODIFICATION",
                "Склад було змінено іншим користувачем. Оновіть сторінку та спробуйте знову.",
                status_code=409,
                details={"flowerSlug": flower_slug, "length": length},
            )

        trx = Transaction(
            date=utcnow(),
            type="writeOff",
            operation_id=operation_id,
            payment_status="cancelled",
            amount=0,
            items=[{
                "flowerSlug": flower_slug,
                "length": length,
                "qty": qty,
                "price": unit_price,
                "name": flower_name,
            }],
            write_off_reason=reason,
            notes=payload.get("notes"),
        )
        db.session.add(trx)
        db.session.commit()

        new_stock = db.session.get(Variant, variant_id).stock
        return {
            "success": True,
            "idempotent": False,
            "data": trx.to_dict(),
            "stockUpdate": {
                "flowerSlug": flower_slug,
                "length": length,
                "decremented": qty,
                "newStock": new_stock,
            },
        }

    result = run_with_retry(_op)
    if not result["idempotent"]:
        current_app.logger.info("Write-off %s: %s %scm x%s (%s)", operation_id, flower_slug, length, qty, reason)
        invalidate_analytics_cache()
    return result


# =============================================================================
# PAYMENTS
# =============================================================================

def _get_transaction(document_id: str) -> Transaction:
    trx = lock_for_update(db.session.query(Transaction).filter_by(document_id=document_id)).first()
    if trx is None:
        raise PosError("TRANSACTION_NOT_FOUND", f"Transaction with id {document_id} not found", status_code=404)
    return trx


def confirm_payment(document_id: str) -> dict:
    """
    Mark a pending / expected sale as paid.

    Raises:
        PosError: TRANSACTION_NOT_FOUND (404), INVALID_TRANSACTION_TYPE,
        TRANSACTION_CANCELLED
    """
    def _op():
        trx = _get_transaction(document_id)
        if trx.type != "sale":
            raise PosError("INVALID_TRANSACTION_TYPE", "Only sale transactions can be confirmed for payment")
        if trx.payment_status == "paid":
            return {
                "success": True,
                "idempotent": True,
                "data": trx.to_dict(),
                "message": "Transaction already marked as paid",
            }
        if trx.payment_status == "cancelled":
            raise PosError("TRANSACTION_CANCELLED", "Returned sales cannot be confirmed for payment")

        trx.payment_status = "paid"
        trx.payment_date = utcnow()
        trx.paid_amount = trx.amount
        _record_paid_sale(trx.customer, trx.amount or 0)
        db.session.commit()
        return {"success": True, "idempotent": False, "data": trx.to_dict()}

    result = run_with_retry(_op)
    if not result["idempotent"]:
        current_app.logger.info("Payment confirmed for %s", document_id)
        invalidate_analytics_cache()
    return result


# =============================================================================
# RETURNS
# =============================================================================

def _refunded_amount(sale: Transaction) -> float:
    """Money actually received for the sale, which the return gives back."""
    if sale.payment_status == "paid":
        return sale.amount or 0
    return sale.paid_amount or 0


def return_sale(document_id: str, payload: dict | None = None) -> dict:
    """
    Return a whole sale: restock its items and cancel it.

    - stock of each item's variant is increased (variants deleted since the
      sale are reported in skippedItems)
    - the customer's balance is credited with the money received
    - a paid sale's total_spent / order_count contribution is reversed
    - a `return` transaction linked to the sale is recorded

    Raises:
        PosError: TRANSACTION_NOT_FOUND (404), INVALID_TRANSACTION_TYPE
    """
    payload = payload or {}
    operation_id = payload.get("operationId") or f"return_{document_id}"

    def _op():
        sale = _get_transaction(document_id)
        if sale.type != "sale":
            raise PosError("INVALID_TRANSACTION_TYPE", "Only sale transactions can be returned")

        existing = _find_by_operation_id(operation_id)
        if existing is None and sale.payment_status == "cancelled":
            existing = db.session.query(Transaction).filter_by(
                related_transaction_id=sale.id, type="return"
            ).first()
        if existing is not None or sale.payment_status == "cancelled":
            return {
                "success": True,
                "idempotent": True,
                "data": {
                    "sale": sale.to_dict(),
                    "return": existing.to_dict() if existing else None,
                },
                "message": "Sale was already returned",
            }

        restocked, skipped = [], []
        for item in sale.items or []:
            variant = find_variant(item.get("flowerSlug"), item.get("length"))
            if variant is None:
                skipped.append(item)
                continue
            restock(variant.id, int(item.get("qty") or 0))
            restocked.append({
                "flowerSlug": item.get("flowerSlug"),
                "length": item.get("length"),
                "incremented": int(item.get("qty") or 0),
            })

        refunded = _refunded_amount(sale)
        customer = sale.customer
        if customer is not None:
            customer.balance = round((customer.balance or 0) + refunded, 2)
            if sale.payment_status == "paid":
                customer.total_spent = max(0, round((customer.total_spent or 0) - (sale.amount or 0), 2))
                customer.order_count = max(0, (customer.order_count or 0) - 1)

        sale.payment_status = "cancelled"
        return_trx = Transaction(
            date=utcnow(),
            type="return",
            operation_id=operation_id,
            payment_status="cancelled",
            amount=sale.amount or 0,
            paid_amount=refunded,
            items=list(sale.items or []),
            customer=customer,
            notes=payload.get("notes"),
            related_transaction=sale,
        )
        db.session.add(return_trx)
        db.session.commit()

        return {
            "success": True,
            "idempotent": False,
            "data": {"sale": sale.to_dict(), "return": return_trx.to_dict()},
            "restockedItems": restocked,
            "skippedItems": skipped,
            "refundedAmount": refunded,
        }

    result = run_with_retry(_op)
    if not result["idempotent"]:
        if result["skippedItems"]:
            current_app.logger.warning(
                "Return of %s skipped %s item(s) whose variants no longer exist",
                document_id, len(result["skippedItems"]),
            )
        current_app.logger.info("Sale %s returned (refunded %s)", document_id, result["refundedAmount"])
        invalidate_analytics_cache()
    return result


# =============================================================================
# BALANCES
# =============================================================================

def sync_balances() -> dict:
    """
    Recompute every customer's balance from their unpaid sales.

    balance = -sum(amount - paidAmount) over pending / expected sales.

    Returns:
        {"success": True, "updated": <customers whose balance changed>}
    """
    def _op():
        owed: dict[int, float] = {}
        unpaid = db.session.query(Transaction).filter(
            Transaction.type == "sale",
            Transaction.payment_status.in_(UNPAID_STATUSES),
            Transaction.customer_id.isnot(None),
        ).all()
        for trx in unpaid:
            owed[trx.customer_id] = owed.get(trx.customer_id, 0) + (trx.amount or 0) - (trx.paid_amount or 0)

        updated = 0
        for customer in db.session.query(Customer).all():
            target = -round(owed.get(customer.id, 0), 2) or 0
            if round(customer.balance or 0, 2) != target:
                customer.balance = target
                updated += 1
        db.session.commit()
        return updated

    updated = run_with_retry(_op)
    current_app.logger.info("Balances synchronised: %s customer(s) updated", updated)
    invalidate_analytics_cache()
    return {"success": True, "updated": updated}


def set_customer_balance(document_id: str, balance) -> Customer:
    value = coerce_number(balance, "balance")

    def _op():
        customer = _find_customer(document_id)
        if customer is None:
            raise PosError("CUSTOMER_NOT_FOUND", f"Customer with id {document_id} not found", status_code=404)
        customer.balance = round(value, 2)
        db.session.commit()
        return customer

    return run_with_retry(_op)


# =============================================================================
# LISTING
# =============================================================================

def list_transactions(*, type_: str | None = None, customer_id: str | None = None,
                      payment_status: str | None = None, page: int = 1, page_size: int = 25) -> dict:
    if page < 1 or page_size < 1 or page_size > 100:
        raise ValidationError("INVALID_PAGINATION", "page must be >= 1 and pageSize between 1 and 100")

    query = db.session.query(Transaction)
    if type_:
        query = query.filter(Transaction.type == type_)
    if payment_status:
        query = query.filter(Transaction.payment_status == payment_status)
    if customer_id:
        customer = _find_customer(customer_id)
        if customer is None:
            return {"data": [], "meta": {"pagination": {"page": page, "pageSize": page_size, "pageCount": 0, "total": 0}}}
        query = query.filter(Transaction.customer_id == customer.id)

    total = query.count()
    rows = (
        query.order_by(Transaction.date.desc(), Transaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "data": [t.to_dict() for t in rows],
        "meta": {
            "pagination": {
                "page": page,
                "pageSize": page_size,
                "pageCount": -(-total // page_size),
                "total": total,
            }
        },
    }
