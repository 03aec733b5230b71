from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import new_document_id


CUSTOMER_TYPES = ("VIP", "Regular", "Wholesale")


class Customer(db.Model):
    """
    Wholesale customer.

    WHY: Sales are always attributed to a customer; paid sales feed
    `total_spent` / `order_count`, unpaid sales feed `balance`.

    BALANCE: Negative means the customer owes money. Recomputed from unpaid
    sales by the balance sync, adjusted directly by returns.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(32), nullable=False, unique=True, default=new_document_id)

    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="Regular")
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)

    total_spent = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    order_count = db.Column(db.Integer, nullable=False, default=0)
    balance = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "name": self.name,
            "type": self.type,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "totalSpent": self.total_spent or 0,
            "orderCount": self.order_count or 0,
            "balance": self.balance or 0,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
