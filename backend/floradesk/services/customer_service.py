# Overview: Service-layer operations for customers.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Customer, Transaction
from ..models.customers import CUSTOMER_TYPES
from ..validation import ValidationError, NotFoundError, ConflictError, is_blank


def get_customer(document_id: str) -> Customer:
    customer = db.session.query(Customer).filter_by(document_id=document_id).first()
    if not customer:
        raise NotFoundError("CUSTOMER_NOT_FOUND", f"Customer with id {document_id} not found")
    return customer


def list_customers(search: str | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if search:
        query = query.filter(Customer.name.ilike(f"%{search}%"))
    return query.order_by(Customer.name).all()


def create_customer(data: dict) -> Customer:
    """
    Create a customer.

    Args:
        data: {name, type? (VIP | Regular | Wholesale), phone?, email?, address?}
    """
    if is_blank(data.get("name")):
        raise ValidationError("MISSING_NAME", "name is required")
    customer_type = data.get("type") or "Regular"
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError("INVALID_CUSTOMER_TYPE", f"type must be one of: {', '.join(CUSTOMER_TYPES)}")

    customer = Customer(
        name=data["name"].strip(),
        type=customer_type,
        phone=data.get("phone"),
        email=data.get("email"),
        address=data.get("address"),
    )
    db.session.add(customer)
    db.session.commit()
    current_app.logger.info("Customer %s created", customer.document_id)
    return customer


def delete_customer(document_id: str) -> dict:
    """
    Delete a customer without transactions.

    WHY: Sales keep a customer reference for balances and analytics, so a
    customer with history cannot be removed.
    """
    customer = get_customer(document_id)
    has_history = db.session.query(Transaction.id).filter_by(customer_id=customer.id).first()
    if has_history:
        raise ConflictError("CUSTOMER_HAS_TRANSACTIONS", "Customer has transactions and cannot be deleted")
    snapshot = customer.to_dict()
    db.session.delete(customer)
    db.session.commit()
    return snapshot
