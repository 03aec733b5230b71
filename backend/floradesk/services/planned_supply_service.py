# Overview: Service-layer operations for supply planning; low-stock lookup and flower search.

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Flower, Variant
from ..validation import ApiError


class PlannedSupplyError(ApiError):
    """Raised for invalid planning query parameters."""
    pass


MAX_THRESHOLD = 10000
SEARCH_LIMIT = 20


def _flatten(variant: Variant) -> dict:
    flower = variant.flower
    return {
        "variantId": variant.id,
        "variantDocumentId": variant.document_id,
        "flowerId": flower.id,
        "flowerDocumentId": flower.document_id,
        "flowerName": flower.name,
        "flowerSlug": flower.slug,
        "imageUrl": flower.image,
        "length": variant.length,
        "currentStock": variant.stock,
        "price": variant.price or 0,
    }


def parse_threshold(raw) -> int:
    """Query-string threshold: default 100, integer within 0..10000."""
    if raw is None or raw == "":
        return 100
    try:
        threshold = int(raw)
    except (TypeError, ValueError):
        raise PlannedSupplyError("INVALID_THRESHOLD", f"Threshold must be between 0 and {MAX_THRESHOLD}")
    if not 0 <= threshold <= MAX_THRESHOLD:
        raise PlannedSupplyError("INVALID_THRESHOLD", f"Threshold must be between 0 and {MAX_THRESHOLD}")
    return threshold


def get_low_stock_variants(threshold: int = 100) -> list[dict]:
    """Published variants with stock at or below the threshold, lowest first."""
    variants = (
        db.session.query(Variant)
        .join(Flower)
        .filter(Flower.published_at.isnot(None), Variant.stock <= threshold)
        .order_by(Variant.stock.asc(), Flower.name.asc(), Variant.length.asc())
        .all()
    )
    return [_flatten(v) for v in variants]


def search_flowers(query: str | None) -> list[dict]:
    """Case-insensitive name/slug search, at most 20 flowers with variants."""
    term = (query or "").strip()
    if len(term) < 2:
        raise PlannedSupplyError("INVALID_QUERY", "Query must be at least 2 characters long")

    pattern = f"%{term.lower()}%"
    flowers = (
        db.session.query(Flower)
        .filter(Flower.published_at.isnot(None))
        .filter(or_(func.lower(Flower.name).like(pattern), func.lower(Flower.slug).like(pattern)))
        .order_by(Flower.name.asc())
        .limit(SEARCH_LIMIT)
        .all()
    )
    return [f.to_dict() for f in flowers]


def get_all_flowers() -> list[dict]:
    flowers = (
        db.session.query(Flower)
        .filter(Flower.published_at.isnot(None))
        .order_by(Flower.name.asc())
        .all()
    )
    return [f.to_dict() for f in flowers]
