# Overview: Service-layer operations for the flower catalog; encapsulates business logic and database work.

"""
Flower Catalog Service

WHY: Flowers and their length variants are what the POS sells and what
supply imports restock. Every write path keeps slugs populated, because
both the POS (items reference `flowerSlug`) and the importer match by slug.

DESIGN:
- Slug is generated from the name when none is given
- safe_update touches only name / description / image (never slug, never
  variants) so an edit cannot orphan stock or break import matching
- delete returns a snapshot so the client can log a productDelete activity
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Flower, Variant
from ..time_utils import utcnow
from ..validation import ApiError, ValidationError, NotFoundError, ConflictError, coerce_int, coerce_number, is_blank, round_half_up
from .slug_service import slugify
from .analytics_service import invalidate_analytics_cache


class FlowerError(ApiError):
    """Raised for catalog operation errors."""
    pass


SAMPLE_CATALOG = [
    ("Троянда червона", "Класична червона троянда", [(50, 62, 520), (60, 75, 450), (70, 90, 320), (80, 105, 180), (90, 130, 120)]),
    ("Троянда біла", "Ніжна біла троянда", [(60, 75, 380), (70, 90, 290), (80, 105, 210)]),
    ("Хризантема", "Кущова хризантема", [(60, 45, 400), (70, 55, 260)]),
    ("Гортензія блакитна", "Велика гортензія", [(50, 140, 90), (60, 170, 60)]),
]


# =============================================================================
# LOOKUPS
# =============================================================================

def get_flower(document_id: str) -> Flower:
    flower = db.session.query(Flower).filter_by(document_id=document_id).first()
    if not flower:
        raise NotFoundError("FLOWER_NOT_FOUND", f"Flower with id {document_id} not found")
    return flower


def list_flowers(*, published_only: bool = True, search: str | None = None) -> list[Flower]:
    query = db.session.query(Flower)
    if published_only:
        query = query.filter(Flower.published_at.isnot(None))
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(or_(func.lower(Flower.name).like(pattern), Flower.slug.like(pattern)))
    return query.order_by(Flower.name).all()


def find_variant(flower_key: str, length: int) -> Variant | None:
    """
    Resolve a variant from a POS item reference.

    `flower_key` is normally the flower slug; older clients send the flower
    documentId, so that is tried second.
    """
    variant = (
        db.session.query(Variant)
        .join(Flower)
        .filter(Flower.slug == flower_key, Variant.length == length)
        .first()
    )
    if variant is None:
        variant = (
            db.session.query(Variant)
            .join(Flower)
            .filter(Flower.document_id == flower_key, Variant.length == length)
            .first()
        )
    return variant


# =============================================================================
# WRITES
# =============================================================================

def _apply_variants(flower: Flower, variants: list) -> None:
    seen = set()
    for index, raw in enumerate(variants):
        if not isinstance(raw, dict):
            raise ValidationError("INVALID_VARIANT", f"Variant at index {index} must be an object")
        length = coerce_int(raw.get("length"), "length", code="INVALID_VARIANT")
        if length <= 0 or length in seen:
            raise ValidationError("INVALID_VARIANT", f"Variant at index {index} has an invalid or duplicate length")
        seen.add(length)
        stock = coerce_int(raw.get("stock", 0), "stock", code="INVALID_VARIANT")
        price = coerce_number(raw.get("price", 0), "price", code="INVALID_VARIANT")
        if stock < 0 or price < 0:
            raise ValidationError("INVALID_VARIANT", f"Variant at index {index} has negative stock or price")
        flower.variants.append(Variant(length=length, stock=stock, price=round_half_up(price, 2)))


def _commit_catalog_change(flower: Flower) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SLUG_EXISTS", f"Flower with slug '{flower.slug}' already exists")


def create_flower(data: dict) -> Flower:
    """
    Create a flower (optionally with variants).

    Args:
        data: {name, slug?, description?, image?, published? (default true),
               variants?: [{length, stock, price}]}

    Raises:
        ValidationError: missing name, bad variant data
        ConflictError: slug already taken
    """
    name = data.get("name")
    if is_blank(name):
        raise ValidationError("MISSING_NAME", "name is required")
    name = name.strip()

    slug = slugify(data.get("slug")) or slugify(name)
    if not slug:
        raise ValidationError("INVALID_SLUG", "Could not build a slug from the name")

    flower = Flower(
        name=name,
        slug=slug,
        description=data.get("description"),
        image=data.get("image"),
        published_at=utcnow() if data.get("published", True) else None,
    )
    _apply_variants(flower, data.get("variants") or [])

    db.session.add(flower)
    _commit_catalog_change(flower)
    current_app.logger.info("Flower %s created (%s variants)", flower.slug, len(flower.variants))
    invalidate_analytics_cache()
    return flower


def update_flower(document_id: str, data: dict) -> Flower:
    """
    General update. A new name without an explicit slug regenerates the slug.
    """
    flower = get_flower(document_id)

    if "name" in data:
        if is_blank(data["name"]):
            raise ValidationError("MISSING_NAME", "name must not be empty")
        flower.name = data["name"].strip()
        if not data.get("slug"):
            flower.slug = slugify(flower.name)
    if data.get("slug"):
        flower.slug = slugify(data["slug"])
    if "description" in data:
        flower.description = data["description"]
    if "image" in data:
        flower.image = data["image"]
    if "published" in data:
        flower.published_at = (flower.published_at or utcnow()) if data["published"] else None

    _commit_catalog_change(flower)
    invalidate_analytics_cache()
    return flower


def safe_update(document_id: str, data: dict) -> Flower:
    """
    Update only name / description / image of a flower.

    WHY: The catalog editor must not be able to clobber the slug or the
    variants (stock) while editing copy.

    Raises:
        ValidationError: missing documentId
        NotFoundError: unknown flower
    """
    if is_blank(document_id):
        raise ValidationError("MISSING_DOCUMENT_ID", "documentId is required")
    flower = get_flower(document_id)

    if data.get("name"):
        flower.name = data["name"].strip()
    if data.get("description"):
        flower.description = data["description"]
    # image may be cleared explicitly with null
    if "image" in data:
        flower.image = data["image"]

    db.session.commit()
    current_app.logger.info("Flower %s safe-updated (fields: %s)", flower.slug, ", ".join(sorted(data)))
    return flower


def delete_flower(document_id: str) -> dict:
    """
    Delete a flower and its variants.

    Returns:
        Snapshot {documentId, name, slug, variants: [{length, stock, price}]}
        suitable for a productDelete shift activity.
    """
    flower = get_flower(document_id)
    snapshot = {
        "documentId": flower.document_id,
        "name": flower.name,
        "slug": flower.slug,
        "variants": [
            {"length": v.length, "stock": v.stock, "price": v.price}
            for v in flower.variants
        ],
    }
    db.session.delete(flower)
    db.session.commit()
    current_app.logger.info("Flower %s deleted", snapshot["slug"])
    invalidate_analytics_cache()
    return snapshot


def update_variant(document_id: str, data: dict) -> Variant:
    variant = db.session.query(Variant).filter_by(document_id=document_id).first()
    if not variant:
        raise NotFoundError("VARIANT_NOT_FOUND", f"Variant with id {document_id} not found")

    if "price" in data:
        price = coerce_number(data["price"], "price")
        if price < 0:
            raise ValidationError("INVALID_PRICE", "price must not be negative")
        variant.price = round_half_up(price, 2)
    if "stock" in data:
        stock = coerce_int(data["stock"], "stock")
        if stock < 0:
            raise ValidationError("INVALID_STOCK", "stock must not be negative")
        variant.stock = stock
    if "length" in data:
        length = coerce_int(data["length"], "length")
        if length <= 0:
            raise ValidationError("INVALID_LENGTH", "length must be positive")
        variant.length = length

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("VARIANT_EXISTS", "A variant with this length already exists for the flower")
    invalidate_analytics_cache()
    return variant


# =============================================================================
# MAINTENANCE
# =============================================================================

def fix_missing_slugs() -> int:
    """Fill slugs for flowers created without one. Returns the number fixed."""
    fixed = 0
    flowers = db.session.query(Flower).filter(or_(Flower.slug.is_(None), Flower.slug == "")).all()
    for flower in flowers:
        slug = slugify(flower.name)
        if not slug:
            current_app.logger.warning("Flower %s has no transliterable name; slug left empty", flower.id)
            continue
        flower.slug = slug
        fixed += 1
    db.session.commit()
    return fixed


def seed_sample_catalog() -> int:
    """Create the sample flowers that do not exist yet. Returns the number created."""
    created = 0
    for name, description, variants in SAMPLE_CATALOG:
        slug = slugify(name)
        if db.session.query(Flower).filter_by(slug=slug).first():
            continue
        create_flower({
            "name": name,
            "description": description,
            "variants": [{"length": length, "price": price, "stock": stock} for length, price, stock in variants],
        })
        created += 1
    return created
