from __future__ import annotations

import secrets
import time

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


TRANSACTION_TYPES = ("sale", "writeOff", "return")
PAYMENT_STATUSES = ("pending", "paid", "expected", "cancelled")
WRITE_OFF_REASONS = ("damage", "expiry", "adjustment", "other")


def new_transaction_document_id() -> str:
    return f"trx_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class Transaction(db.Model):
    """
    POS document: sale, write-off or return.

    WHY: Single ledger of stock-moving operations. `operation_id` is the
    client-supplied idempotency key; a repeated submit with the same key
    returns the stored row instead of moving stock twice.

    ITEMS: JSON snapshot [{flowerSlug, length, qty, price, name, subtotal}]
    taken at the time of the operation, independent of later catalog edits.

    LIFECYCLE (sales):
    - pending / expected: unpaid, counted in the customer's balance
    - paid: counted in total_spent / order_count
    - cancelled: returned (write-offs are stored as cancelled from the start)
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_type_date", "type", "date"),
        db.Index("ix_transactions_customer_status", "customer_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(48), nullable=False, unique=True, default=new_transaction_document_id)

    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    type = db.Column(db.String(16), nullable=False)
    operation_id = db.Column(db.String(128), nullable=False, unique=True, index=True)

    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    items = db.Column(db.JSON, nullable=False, default=list)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    write_off_reason = db.Column(db.String(16), nullable=True)

    # return -> original sale
    related_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("transactions", lazy=True))
    related_transaction = db.relationship("Transaction", remote_side=[id])

    def to_dict(self, include_customer: bool = True) -> dict:
        data = {
            "id": self.id,
            "documentId": self.document_id,
            "date": to_utc_z(self.date),
            "type": self.type,
            "operationId": self.operation_id,
            "paymentStatus": self.payment_status,
            "amount": self.amount or 0,
            "paidAmount": self.paid_amount or 0,
            "items": list(self.items or []),
            "paymentDate": to_utc_z(self.payment_date),
            "notes": self.notes,
            "writeOffReason": self.write_off_reason,
            "relatedTransaction": (
                self.related_transaction.document_id if self.related_transaction else None
            ),
            "createdAt": to_utc_z(self.created_at),
        }
        if include_customer:
            data["customer"] = self.customer.to_dict() if self.customer else None
        return data
