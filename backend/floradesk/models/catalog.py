from __future__ import annotations

import secrets

from ..extensions import db
from ..time_utils import to_utc_z


def new_document_id() -> str:
    """Opaque public identifier used in URLs (never the integer PK)."""
    return secrets.token_hex(12)


class Flower(db.Model):
    """
    A flower product (e.g. "Троянда червона").

    WHY: The catalog unit customers recognise by name. Stock and prices live
    on its Variants, one per stem length.

    SLUG: Unique, transliterated from the Ukrainian name on create. Imports
    match existing flowers by slug, so safe updates never change it.
    """
    __tablename__ = "flowers"
    __table_args__ = (
        db.Index("ix_flowers_published_at", "published_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(32), nullable=False, unique=True, default=new_document_id)

    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(255), nullable=True, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(512), nullable=True)  # Image URL

    # NULL = draft (hidden from public catalog and stock analytics)
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    variants = db.relationship(
        "Variant",
        back_populates="flower",
        cascade="all, delete-orphan",
        order_by="Variant.length",
        lazy=True,
    )

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def to_dict(self, include_variants: bool = True) -> dict:
        data = {
            "id": self.id,
            "documentId": self.document_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "image": self.image,
            "publishedAt": to_utc_z(self.published_at),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class Variant(db.Model):
    """
    A stem length of a flower with its own stock and price.

    INVARIANTS:
    - stock never goes negative (guarded decrement in the POS service)
    - one variant per (flower, length)

    PRICES: `price` is the UAH sale price; `cost_price` is the USD purchase
    cost written by supply imports.
    """
    __tablename__ = "variants"
    __table_args__ = (
        db.UniqueConstraint("flower_id", "length", name="uq_variants_flower_length"),
        db.CheckConstraint("stock >= 0", name="ck_variants_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(32), nullable=False, unique=True, default=new_document_id)
    flower_id = db.Column(db.Integer, db.ForeignKey("flowers.id"), nullable=False, index=True)

    length = db.Column(db.Integer, nullable=False)  # cm
    stock = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    cost_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    flower = db.relationship("Flower", back_populates="variants")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "length": self.length,
            "stock": self.stock,
            "price": self.price,
            "costPrice": self.cost_price,
        }
