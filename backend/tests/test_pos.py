"""
POS tests: sales, write-offs, payment confirmation, returns and balances.

Verifies:
- Stock is decremented exactly once per operationId
- Insufficient stock rejects the whole sale (no partial decrement)
- Paid sales feed customer statistics, unpaid sales feed the balance sync
- Returns restock, credit the balance and cancel the sale
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from floradesk.extensions import db
from floradesk.models import Customer, Transaction, Variant
from floradesk.services import pos_service
from floradesk.services.concurrency import decrement_stock, run_with_retry
from floradesk.validation import ValidationError

from conftest import sale_payload


def _stock(length=60):
    db.session.expire_all()
    return db.session.query(Variant).filter_by(length=length).one().stock


def _variant_id(length):
    return db.session.query(Variant.id).filter_by(length=length).scalar()


def _empty_stock(variant_id):
    db.session.execute(update(Variant.__table__).where(Variant.__table__.c.id == variant_id).values(stock=0))


# =============================================================================
# SALES
# =============================================================================


class TestCreateSale:

    def test_sale_decrements_stock(self, client, auth_headers, rose, customer):
        resp = client.post("/api/pos/sales", json=sale_payload(customer), headers=auth_headers)

        assert resp.status_code == 201
        body = resp.json
        assert body["success"] is True
        assert body["idempotent"] is False
        assert body["data"]["amount"] == 750
        assert body["data"]["paymentStatus"] == "pending"
        assert body["stockUpdates"] == [{"flowerSlug": "troyanda-chervona", "length": 60, "decremented": 10}]
        assert body["alert"]["title"] == "Замовлення створено"
        assert _stock() == 90

    def test_repeated_operation_id_is_idempotent(self, client, auth_headers, rose, customer):
        first = client.post("/api/pos/sales", json=sale_payload(customer), headers=auth_headers)
        second = client.post("/api/pos/sales", json=sale_payload(customer), headers=auth_headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json["idempotent"] is True
        assert second.json["data"]["documentId"] == first.json["data"]["documentId"]
        assert second.json["alert"]["title"] == "Замовлення вже існує"
        assert _stock() == 90
        assert db.session.query(Transaction).count() == 1

    def test_discount_and_half_up_rounding(self, client, auth_headers, rose, customer):
        items = [{"flowerSlug": "troyanda-chervona", "length": 60, "qty": 3, "price": 10.5, "name": "Троянда"}]
        resp = client.post(
            "/api/pos/sales",
            json=sale_payload(customer, items=items, discount=1),
            headers=auth_headers,
        )
        # 31.5 - 1 = 30.5 rounds up
        assert resp.json["data"]["amount"] == 31

    def test_insufficient_stock_rejects_whole_sale(self, client, auth_headers, rose, customer):
        items = [
            {"flowerSlug": "troyanda-chervona", "length": 60, "qty": 5, "price": 75.0, "name": "Троянда 60"},
            {"flowerSlug": "troyanda-chervona", "length": 70, "qty": 51, "price": 90.0, "name": "Троянда 70"},
        ]
        resp = client.post("/api/pos/sales", json=sale_payload(customer, items=items), headers=auth_headers)

        assert resp.status_code == 409
        error = resp.json["error"]
        assert error["code"] == "INSUFFICIENT_STOCK"
        assert error["details"] == [{
            "flowerSlug": "troyanda-chervona",
            "length": 70,
            "requested": 51,
            "available": 50,
            "name": "Троянда 70",
        }]
        assert resp.json["alert"]["type"] == "error"
        assert _stock(60) == 100
        assert _stock(70) == 50

    def test_repeated_lines_are_summed_before_stock_check(self, client, auth_headers, rose, customer):
        line = {"flowerSlug": "troyanda-chervona", "length": 70, "qty": 30, "price": 90.0, "name": "Троянда"}
        resp = client.post("/api/pos/sales", json=sale_payload(customer, items=[line, dict(line)]), headers=auth_headers)

        assert resp.status_code == 409
        assert resp.json["error"]["details"][0]["requested"] == 60
        assert _stock(70) == 50

    def test_unknown_variant_reports_zero_available(self, client, auth_headers, rose, customer):
        items = [{"flowerSlug": "troyanda-chervona", "length": 40, "qty": 1, "price": 50, "name": "Троянда 40"}]
        resp = client.post("/api/pos/sales", json=sale_payload(customer, items=items), headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json["error"]["details"][0]["available"] == 0

    def test_missing_operation_id(self, client, auth_headers, rose, customer):
        payload = sale_payload(customer)
        del payload["operationId"]
        resp = client.post("/api/pos/sales", json=payload, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "MISSING_OPERATION_ID"

    def test_item_missing_fields(self, client, auth_headers, rose, customer):
        items = [{"flowerSlug": "troyanda-chervona", "length": 60, "qty": 1}]
        resp = client.post("/api/pos/sales", json=sale_payload(customer, items=items), headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_ITEM"

    @pytest.mark.parametrize("price", ["NaN", "inf", "-Infinity"])
    def test_non_finite_price(self, client, auth_headers, rose, customer, price):
        items = [{"flowerSlug": "troyanda-chervona", "length": 60, "qty": 1, "price": price, "name": "Троянда"}]
        resp = client.post("/api/pos/sales", json=sale_payload(customer, items=items), headers=auth_headers)

        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_ITEM"
        assert _stock() == 100

    def test_stock_taken_mid_sale_rolls_back_every_line(self, client, auth_headers, rose, customer, monkeypatch):
        taken_id = _variant_id(70)
        real_decrement = pos_service.decrement_stock

        def decrement_after_competitor(variant_id, qty):
            if variant_id == taken_id:
                _empty_stock(variant_id)
            return real_decrement(variant_id, qty)

        monkeypatch.setattr(pos_service, "decrement_stock", decrement_after_competitor)
        items = [
            {"flowerSlug": "troyanda-chervona", "length": 60, "qty": 10, "price": 75.0, "name": "Троянда 60"},
            {"flowerSlug": "troyanda-chervona", "length": 70, "qty": 5, "price": 90.0, "name": "Троянда 70"},
        ]
        resp = client.post("/api/pos/sales", json=sale_payload(customer, items=items), headers=auth_headers)

        assert resp.status_code == 409
        assert resp.json["error"]["code"] == "CONCURRENT_MODIFICATION"
        assert resp.json["error"]["details"]["length"] == 70
        assert db.session.query(Transaction).count() == 0
        assert _stock(60) == 100
        assert _stock(70) == 50

    def test_unknown_customer(self, client, auth_headers, rose, customer):
        payload = sale_payload(customer, customerId="nope")
        resp = client.post("/api/pos/sales", json=payload, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "CUSTOMER_NOT_FOUND"

    def test_invalid_payment_status(self, client, auth_headers, rose, customer):
        payload = sale_payload(customer, paymentStatus="cancelled")
        resp = client.post("/api/pos/sales", json=payload, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_PAYMENT_STATUS"

    def test_paid_sale_updates_customer_statistics(self, client, auth_headers, rose, customer):
        resp = client.post("/api/pos/sales", json=sale_payload(customer, paymentStatus="paid"), headers=auth_headers)

        assert resp.json["data"]["paidAmount"] == 750
        db.session.expire_all()
        buyer = db.session.get(Customer, customer.id)
        assert buyer.order_count == 1
        assert buyer.total_spent == 750


# =============================================================================
# WRITE-OFFS
# =============================================================================


class TestWriteOff:

    def _payload(self, **extra):
        payload = {"operationId": "wo-1", "flowerSlug": "troyanda-chervona", "length": 60, "qty": 4, "reason": "damage"}
        payload.update(extra)
        return payload

    def test_write_off_decrements_stock(self, client, auth_headers, rose):
        resp = client.post("/api/pos/write-offs", json=self._payload(), headers=auth_headers)

        assert resp.status_code == 201
        assert resp.json["data"]["type"] == "writeOff"
        assert resp.json["data"]["writeOffReason"] == "damage"
        assert resp.json["stockUpdate"]["newStock"] == 96
        assert resp.json["alert"]["message"] == "Товар успішно списано. Склад зменшено на 4 шт."
        assert _stock() == 96

    def test_write_off_is_idempotent(self, client, auth_headers, rose):
        client.post("/api/pos/write-offs", json=self._payload(), headers=auth_headers)
        resp = client.post("/api/pos/write-offs", json=self._payload(), headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json["idempotent"] is True
        assert _stock() == 96

    def test_write_off_more_than_stock(self, client, auth_headers, rose):
        resp = client.post("/api/pos/write-offs", json=self._payload(qty=101), headers=auth_headers)

        assert resp.status_code == 409
        assert resp.json["error"]["message"] == "Cannot write off 101 items. Only 100 available."
        assert _stock() == 100

    def test_stock_sold_before_write_off_commits(self, client, auth_headers, rose, monkeypatch):
        real_decrement = pos_service.decrement_stock

        def decrement_after_competitor(variant_id, qty):
            _empty_stock(variant_id)
            db.session.commit()
            return real_decrement(variant_id, qty)

        monkeypatch.setattr(pos_service, "decrement_stock", decrement_after_competitor)
        resp = client.post("/api/pos/write-offs", json=self._payload(), headers=auth_headers)

        assert resp.status_code == 409
        assert resp.json["error"]["code"] == "CONCURRENT_MODIFICATION"
        assert _stock() == 0
        assert db.session.query(Transaction).filter_by(type="writeOff").count() == 0

    def test_invalid_reason(self, client, auth_headers, rose):
        resp = client.post("/api/pos/write-offs", json=self._payload(reason="theft"), headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_REASON"

    def test_unknown_variant(self, client, auth_headers, rose):
        resp = client.post("/api/pos/write-offs", json=self._payload(length=45), headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "VARIANT_NOT_FOUND"


# =============================================================================
# PAYMENTS & RETURNS
# =============================================================================


class TestPaymentAndReturn:

    def _sale(self, client, auth_headers, customer, **extra):
        resp = client.post("/api/pos/sales", json=sale_payload(customer, **extra), headers=auth_headers)
        assert resp.status_code == 201
        return resp.json["data"]["documentId"]

    def test_confirm_payment(self, client, auth_headers, rose, customer):
        document_id = self._sale(client, auth_headers, customer)

        resp = client.put(f"/api/pos/transactions/{document_id}/confirm-payment", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json["data"]["paymentStatus"] == "paid"
        assert resp.json["data"]["paidAmount"] == 750
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).total_spent == 750

        again = client.put(f"/api/pos/transactions/{document_id}/confirm-payment", headers=auth_headers)
        assert again.json["idempotent"] is True
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).order_count == 1

    def test_confirm_unknown_transaction(self, client, auth_headers, db_session):
        resp = client.put("/api/pos/transactions/trx_missing/confirm-payment", headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json["error"]["code"] == "TRANSACTION_NOT_FOUND"

    def test_return_restocks_and_credits_balance(self, client, auth_headers, rose, customer):
        document_id = self._sale(client, auth_headers, customer, paymentStatus="paid")
        assert _stock() == 90

        resp = client.post(f"/api/pos/transactions/{document_id}/return", json={}, headers=auth_headers)

        assert resp.status_code == 201
        assert resp.json["refundedAmount"] == 750
        assert resp.json["data"]["sale"]["paymentStatus"] == "cancelled"
        assert resp.json["data"]["return"]["type"] == "return"
        assert _stock() == 100
        buyer = db.session.get(Customer, customer.id)
        assert buyer.balance == 750
        assert buyer.total_spent == 0
        assert buyer.order_count == 0

    def test_return_of_partly_paid_sale_refunds_received_money(self, client, auth_headers, rose, customer):
        document_id = self._sale(client, auth_headers, customer)
        sale = db.session.query(Transaction).filter_by(document_id=document_id).one()
        sale.paid_amount = 300
        db.session.commit()

        resp = client.post(f"/api/pos/transactions/{document_id}/return", json={}, headers=auth_headers)

        assert resp.status_code == 201
        assert resp.json["refundedAmount"] == 300
        assert resp.json["data"]["return"]["paidAmount"] == 300
        assert _stock() == 100
        buyer = db.session.get(Customer, customer.id)
        assert buyer.balance == 300
        assert buyer.total_spent == 0
        assert buyer.order_count == 0

    def test_return_of_unpaid_sale_refunds_nothing(self, client, auth_headers, rose, customer):
        document_id = self._sale(client, auth_headers, customer)

        resp = client.post(f"/api/pos/transactions/{document_id}/return", json={}, headers=auth_headers)

        assert resp.status_code == 201
        assert resp.json["refundedAmount"] == 0
        assert resp.json["data"]["sale"]["paymentStatus"] == "cancelled"
        assert _stock() == 100
        assert db.session.get(Customer, customer.id).balance == 0

    def test_return_twice_is_idempotent(self, client, auth_headers, rose, customer):
        document_id = self._sale(client, auth_headers, customer)
        client.post(f"/api/pos/transactions/{document_id}/return", json={}, headers=auth_headers)

        resp = client.post(f"/api/pos/transactions/{document_id}/return", json={}, headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json["idempotent"] is True
        assert _stock() == 100

    def test_returned_sale_cannot_be_confirmed(self, client, auth_headers, rose, customer):
        document_id = self._sale(client, auth_headers, customer)
        client.post(f"/api/pos/transactions/{document_id}/return", json={}, headers=auth_headers)

        resp = client.put(f"/api/pos/transactions/{document_id}/confirm-payment", headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "TRANSACTION_CANCELLED"


# =============================================================================
# BALANCES & LISTING
# =============================================================================


class TestBalances:

    def test_sync_balances_from_unpaid_sales(self, client, auth_headers, rose, customer):
        client.post("/api/pos/sales", json=sale_payload(customer, "op-a"), headers=auth_headers)
        client.post("/api/pos/sales", json=sale_payload(customer, "op-b", paymentStatus="expected"), headers=auth_headers)
        client.post("/api/pos/sales", json=sale_payload(customer, "op-c", paymentStatus="paid"), headers=auth_headers)

        resp = client.post("/api/pos/sync-balances", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json["updated"] == 1
        assert resp.json["alert"]["message"] == "Оновлено балансів: 1"
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).balance == -1500

        again = client.post("/api/pos/sync-balances", headers=auth_headers)
        assert again.json["updated"] == 0

    def test_set_balance(self, client, auth_headers, customer):
        resp = client.put(f"/api/pos/customers/{customer.document_id}/balance", json={"balance": -120.5}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json["data"]["balance"] == -120.5

    def test_set_balance_requires_value(self, client, auth_headers, customer):
        resp = client.put(f"/api/pos/customers/{customer.document_id}/balance", json={}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "MISSING_BALANCE"

    def test_list_transactions_filters_and_paginates(self, client, auth_headers, rose, customer):
        for index in range(3):
            client.post("/api/pos/sales", json=sale_payload(customer, f"op-{index}", items=[
                {"flowerSlug": "troyanda-chervona", "length": 60, "qty": 1, "price": 75.0, "name": "Троянда"},
            ]), headers=auth_headers)
        client.post("/api/pos/write-offs", json={
            "operationId": "wo-x", "flowerSlug": "troyanda-chervona", "length": 60, "qty": 1, "reason": "expiry",
        }, headers=auth_headers)

        resp = client.get("/api/pos/transactions?type=sale&pageSize=2", headers=auth_headers)

        assert resp.status_code == 200
        assert len(resp.json["data"]) == 2
        assert resp.json["meta"]["pagination"] == {"page": 1, "pageSize": 2, "pageCount": 2, "total": 3}

    def test_service_rejects_bad_pagination(self, db_session):
        with pytest.raises(ValidationError):
            pos_service.list_transactions(page=0)


# =============================================================================
# RETRY
# =============================================================================


class TestRunWithRetry:

    def test_transient_error_is_retried(self, db_session):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("UPDATE variants", {}, Exception("database is locked"))
            return "done"

        assert run_with_retry(flaky, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_gives_up_after_last_attempt(self, db_session):
        def locked():
            raise OperationalError("UPDATE variants", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_with_retry(locked, attempts=2, backoff_base=0)

    def test_api_error_is_not_retried(self, db_session):
        calls = []

        def refused():
            calls.append(1)
            raise pos_service.PosError("CONCURRENT_MODIFICATION", "stock changed", status_code=409)

        with pytest.raises(pos_service.PosError):
            run_with_retry(refused, backoff_base=0)
        assert calls == [1]

    def test_decrement_stock_guards_against_overselling(self, rose):
        variant_id = _variant_id(70)

        assert decrement_stock(variant_id, 50) is True
        assert decrement_stock(variant_id, 1) is False
        db.session.commit()
        assert _stock(70) == 0
