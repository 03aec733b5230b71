# Overview: Service-layer orchestration of supplier Excel imports (checksum, parse, validate, cost, upsert, audit).

"""
Supply Import Service

WHY: Restocking is done by uploading the supplier's invoice. One import
updates many variants at once, so it has to be repeatable, previewable and
auditable.

PIPELINE:
1. sha256 checksum; a file already imported is rejected unless forced
2. parse (import_parser) -> normalize (import_normalizer)
3. per-row overrides from the preview screen (name, length)
4. validate (import_validator)
5. optional full landed cost (air freight + truck + transfer fee + tax)
6. aggregate rows of the same variant, then upsert flowers and variants
7. Supply record with every row and its outcome

DRY RUN: steps 1-5 plus the Supply record; the catalog is not touched and
all rows are reported as skipped.

PRICES: the invoice price becomes the variant's cost_price (USD). The UAH
sale price is only computed for new variants and variants without a price:
cost * (1 + margin%) * usdRate.
"""

from __future__ import annotations

import hashlib

from flask import current_app

from ..extensions import db
from ..models import Flower, Supply, Variant
from ..time_utils import to_local, utcnow
from ..validation import ApiError, NotFoundError, ValidationError, coerce_int, coerce_number, round_half_up
from .analytics_service import invalidate_analytics_cache
from .currency_service import get_usd_rate
from .import_normalizer import normalize_rows, title_case
from .import_parser import ParseError, parse_workbook
from .import_validator import validate_rows
from .slug_service import slugify


class SupplyImportError(ApiError):
    """Raised for import pipeline errors."""

    def __init__(self, code: str, message: str, *, status_code: int | None = None,
                 existing_supply_id: int | None = None):
        super().__init__(code, message, status_code=status_code)
        self.existing_supply_id = existing_supply_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.existing_supply_id is not None:
            body["error"]["existingSupplyId"] = self.existing_supply_id
        return body


STOCK_MODES = ("replace", "add", "skip")
COST_MODES = ("simple", "full")

GRADE_LENGTHS = {
    "mini": 10,
    "standard": 40,
    "select": 60,
    "premium": 80,
    "jumbo": 100,
    "xl": 110,
    "xxl": 120,
}

DEFAULT_FULL_COST_PARAMS = {
    "truckCostPerBox": 75.0,
    "transferFeePercent": 3.5,
    "taxPerStem": 0.05,
}

XLSX_MAGIC = b"PK\x03\x04"


def compute_checksum(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def is_xlsx(content: bytes) -> bool:
    """.xlsx is a zip container; legacy .xls (OLE2) is not supported."""
    return content[:4] == XLSX_MAGIC


def grade_to_length(grade: str | None) -> int | None:
    if not grade:
        return None
    return GRADE_LENGTHS.get(grade.lower())


def variant_length(row: dict) -> int | None:
    return row["length"] if row.get("length") is not None else grade_to_length(row.get("grade"))


# =============================================================================
# COST CALCULATION
# =============================================================================

def apply_full_cost(rows: list[dict], metadata: dict, params: dict | None = None) -> list[dict]:
    """
    Replace each row's price with its landed cost per stem:

        (base + airPerBox/stemsInBox + truck/stemsInBox) * (1 + fee%) + tax

    stemsInBox is the stock summed over the rows of the same box (Ross
    CULTIVOS), or over the whole file when boxes are unknown. Without
    transport and box totals in the metadata the rows are returned as-is.
    """
    params = {**DEFAULT_FULL_COST_PARAMS, **{k: v for k, v in (params or {}).items() if v is not None}}
    transport = metadata.get("transport")
    total_boxes = metadata.get("totalBoxes")
    if not transport or not total_boxes or total_boxes <= 0:
        current_app.logger.warning("Missing transport or box data for full cost calculation, using simple mode")
        return rows

    air_per_box = transport / total_boxes
    truck = float(params["truckCostPerBox"])
    fee = float(params["transferFeePercent"])
    tax = float(params["taxPerStem"])

    stems_per_box: dict[str, int] = {}
    for row in rows:
        box_id = row["original"].get("boxId") or "default"
        stems_per_box[box_id] = stems_per_box.get(box_id, 0) + row["stock"]

    current_app.logger.info(
        "Full cost calculation: transport=%s totalBoxes=%s airPerBox=%.2f", transport, total_boxes, air_per_box,
    )

    result = []
    for row in rows:
        box_id = row["original"].get("boxId") or "default"
        stems = stems_per_box.get(box_id) or row["stock"]
        base = row["price"]
        air_per_stem = air_per_box / stems
        truck_per_stem = truck / stems
        full_cost = round_half_up((base + air_per_stem + truck_per_stem) * (1 + fee / 100) + tax, 2)
        result.append({
            **row,
            "price": full_cost,
            "original": {
                **row["original"],
                "_fullCostCalculation": {
                    "basePrice": base,
                    "airPerStem": round_half_up(air_per_stem, 2),
                    "truckPerStem": round_half_up(truck_per_stem, 2),
                    "transferFeePercent": fee,
                    "taxPerStem": tax,
                    "fullCost": full_cost,
                },
            },
        })
    return result


def sale_price_for(cost_price: float, margin_percent: float, usd_rate: float) -> float:
    return round_half_up(cost_price * (1 + margin_percent / 100) * usd_rate, 2)


# =============================================================================
# UPSERT
# =============================================================================

def aggregate_rows(rows: list[dict]) -> tuple[list[dict], list[dict]]:
    """
    Merge rows that land on the same variant (slug + length): stock is
    summed and the cost becomes the stock-weighted average.

    Returns:
        (aggregated_rows, warnings)
    """
    groups: dict[tuple, list[dict]] = {}
    for row in rows:
        groups.setdefault((row["slug"], variant_length(row)), []).append(row)

    aggregated: list[dict] = []
    warnings: list[dict] = []
    for group in groups.values():
        if len(group) == 1:
            aggregated.append(group[0])
            continue

        total_stock = sum(r["stock"] for r in group)
        total_cost = sum(r["stock"] * r["price"] for r in group)
        avg_price = round_half_up(total_cost / total_stock, 2) if total_stock > 0 else 0.0
        first, last = group[0], group[-1]
        stocks = [r["stock"] for r in group]
        size = last["length"] if last.get("length") is not None else last.get("grade")

        warnings.append({
            "row": first["rowIndex"],
            "field": "stock",
            "message": (
                f'Знайдено {len(group)} рядків для "{last["flowerName"]}" {size}см. '
                f"Кількість агреговано: {' + '.join(str(s) for s in stocks)} = {total_stock} шт"
            ),
            "originalValue": stocks,
            "normalizedValue": total_stock,
        })
        aggregated.append({
            **last,
            "stock": total_stock,
            "price": avg_price,
            "original": {
                **last["original"],
                "_aggregatedFromHashes": [r["hash"] for r in group],
                "_aggregatedStocks": stocks,
                "_aggregatedPrices": [r["price"] for r in group],
            },
        })
    return aggregated, warnings


def _apply_stock_mode(current: int, incoming: int, mode: str) -> int:
    if mode == "add":
        return current + incoming
    if mode == "skip":
        return current
    return incoming


def _upsert_flower(name: str, slug: str) -> tuple[Flower, bool]:
    flower = db.session.query(Flower).filter_by(slug=slug).first()
    if flower is not None:
        return flower, False
    flower = Flower(name=name, slug=slug, published_at=utcnow())
    db.session.add(flower)
    db.session.flush()
    current_app.logger.info("Import created flower %s (%s)", name, slug)
    return flower, True


def _upsert_variant(flower: Flower, row: dict, options: dict, usd_rate) -> tuple[bool, dict]:
    length = variant_length(row)
    cost_price = row["price"]
    margin = options["salePriceMarginPercent"]

    variant = db.session.query(Variant).filter_by(flower_id=flower.id, length=length).first()
    if variant is not None:
        before = {"stock": variant.stock, "costPrice": variant.cost_price, "price": variant.price}
        variant.stock = _apply_stock_mode(variant.stock, row["stock"], options["stockMode"])
        variant.cost_price = cost_price
        if not variant.price or variant.price <= 0:
            variant.price = sale_price_for(cost_price, margin, usd_rate())
        after = {"stock": variant.stock, "costPrice": cost_price, "price": variant.price}
        return False, {
            "type": "update",
            "entity": "variant",
            "documentId": variant.document_id,
            "data": {"length": length, "stock": variant.stock, "costPrice": cost_price,
                     "price": variant.price, "slug": row["slug"]},
            "before": before,
            "after": after,
        }

    variant = Variant(
        flower=flower,
        length=length,
        stock=row["stock"],
        cost_price=cost_price,
        price=sale_price_for(cost_price, margin, usd_rate()),
    )
    db.session.add(variant)
    db.session.flush()
    return True, {
        "type": "create",
        "entity": "variant",
        "documentId": variant.document_id,
        "data": {"length": length, "stock": variant.stock, "costPrice": cost_price,
                 "price": variant.price, "flowerId": flower.id, "slug": row["slug"]},
    }


def upsert_rows(rows: list[dict], options: dict) -> tuple[dict, dict[str, str], list[dict]]:
    """
    Write aggregated rows to the catalog inside the caller's transaction.

    Returns:
        (result, outcomes_by_hash, aggregation_warnings) where result holds
        the created/updated counters and the operation log.
    """
    result = {
        "flowersCreated": 0,
        "flowersUpdated": 0,
        "variantsCreated": 0,
        "variantsUpdated": 0,
        "operations": [],
    }
    outcomes: dict[str, str] = {}

    rate_cache: list[float] = []

    def usd_rate() -> float:
        if not rate_cache:
            override = options.get("exchangeRate")
            rate_cache.append(override if override and override > 0 else get_usd_rate())
        return rate_cache[0]

    aggregated, warnings = aggregate_rows(rows)

    by_slug: dict[str, list[dict]] = {}
    for row in aggregated:
        by_slug.setdefault(row["slug"], []).append(row)

    for slug, flower_rows in by_slug.items():
        flower, created = _upsert_flower(flower_rows[0]["flowerName"], slug)
        result["flowersCreated" if created else "flowersUpdated"] += 1
        result["operations"].append({
            "type": "create" if created else "update",
            "entity": "flower",
            "documentId": flower.document_id,
            "data": {"name": flower.name, "slug": flower.slug},
        })

        for row in flower_rows:
            variant_created, operation = _upsert_variant(flower, row, options, usd_rate)
            outcome = "created" if variant_created else "updated"
            result["variantsCreated" if variant_created else "variantsUpdated"] += 1
            result["operations"].append(operation)
            outcomes[row["hash"]] = outcome
            for merged_hash in row["original"].get("_aggregatedFromHashes", []):
                outcomes[merged_hash] = outcome

    return result, outcomes, warnings


# =============================================================================
# OPTIONS
# =============================================================================

def build_options(raw: dict) -> dict:
    """
    Validate import options (already decoded from the multipart form).

    Raises:
        ValidationError: INVALID_INPUT for an unknown mode or bad number
    """
    stock_mode = raw.get("stockMode") or "replace"
    if stock_mode not in STOCK_MODES:
        raise ValidationError("INVALID_INPUT", f"stockMode must be one of: {', '.join(STOCK_MODES)}")
    cost_mode = raw.get("costCalculationMode") or "simple"
    if cost_mode not in COST_MODES:
        raise ValidationError("INVALID_INPUT", f"costCalculationMode must be one of: {', '.join(COST_MODES)}")

    full_cost_params = raw.get("fullCostParams")
    if full_cost_params is not None:
        if not isinstance(full_cost_params, dict):
            raise ValidationError("INVALID_INPUT", "fullCostParams must be an object")
        full_cost_params = {
            key: coerce_number(full_cost_params[key], f"fullCostParams.{key}")
            for key in DEFAULT_FULL_COST_PARAMS
            if full_cost_params.get(key) is not None
        }

    row_overrides = raw.get("rowOverrides")
    if row_overrides is not None and not isinstance(row_overrides, dict):
        raise ValidationError("INVALID_INPUT", "rowOverrides must be an object keyed by row hash")

    margin = raw.get("salePriceMarginPercent")
    if margin is None:
        margin = current_app.config.get("DEFAULT_SALE_MARGIN_PERCENT", 10)

    return {
        "dryRun": bool(raw.get("dryRun")),
        "stockMode": stock_mode,
        "awb": raw.get("awb") or None,
        "supplier": raw.get("supplier") or None,
        "forceImport": bool(raw.get("forceImport")),
        "rowOverrides": row_overrides or {},
        "costCalculationMode": cost_mode,
        "fullCostParams": full_cost_params,
        "salePriceMarginPercent": coerce_number(margin, "salePriceMarginPercent"),
        "exchangeRate": raw.get("exchangeRate"),
        "userId": raw.get("userId"),
    }


def _apply_overrides(rows: list[dict], overrides: dict) -> list[dict]:
    if not overrides:
        return rows
    result = []
    for row in rows:
        override = overrides.get(row["hash"])
        if not isinstance(override, dict):
            result.append(row)
            continue
        updated = dict(row)
        name = override.get("flowerName")
        if isinstance(name, str) and name.strip():
            updated["flowerName"] = title_case(name.strip())
            updated["slug"] = slugify(updated["flowerName"])
        length = override.get("length")
        if length is not None:
            updated["length"] = coerce_int(length, "rowOverrides.length")
            updated["grade"] = None
        result.append(updated)
    return result


# =============================================================================
# ORCHESTRATION
# =============================================================================

def _find_previous_import(checksum: str) -> Supply | None:
    # Dry runs are previews, so they never block the real import of the same file
    return (
        db.session.query(Supply)
        .filter(Supply.checksum == checksum, Supply.supply_status != "dry-run")
        .order_by(Supply.id.asc())
        .first()
    )


def _supply_rows(normalized: list[dict], invalid_rows: dict[int, str], outcomes: dict[str, str],
                 dry_run: bool) -> list[dict]:
    supply_rows = []
    for row in normalized:
        if row["rowIndex"] in invalid_rows:
            outcome, error = "error", invalid_rows[row["rowIndex"]]
        elif dry_run:
            outcome, error = "skipped", None
        else:
            outcome, error = outcomes.get(row["hash"], "skipped"), None
        supply_rows.append({
            "original": row["original"],
            "normalized": {
                "flowerName": row["flowerName"],
                "length": row["length"],
                "grade": row["grade"],
                "stock": row["stock"],
                "costPrice": row["price"],
                "supplier": row["supplier"],
                "awb": row["awb"],
            },
            "hash": row["hash"],
            "outcome": outcome,
            "error": error,
        })
    return supply_rows


def process_excel(content: bytes, filename: str, raw_options: dict) -> dict:
    """
    Run the import pipeline for an uploaded .xlsx invoice.

    Returns:
        {"supplyId", "status", "stats", "errors", "warnings", "rows", "operations"}

    Raises:
        SupplyImportError: DUPLICATE_CHECKSUM (409), INVALID_FORMAT (400),
            VALIDATION_FAILED (400)
        ValidationError: INVALID_INPUT for bad options
    """
    options = build_options(raw_options)
    dry_run = options["dryRun"]

    checksum = compute_checksum(content)
    if not options["forceImport"]:
        existing = _find_previous_import(checksum)
        if existing is not None:
            imported_on = to_local(existing.date_parsed).strftime("%d.%m.%Y, %H:%M:%S")
            raise SupplyImportError(
                "DUPLICATE_CHECKSUM",
                f"This file was already imported on {imported_on}",
                status_code=409,
                existing_supply_id=existing.id,
            )

    try:
        parsed_rows, detection = parse_workbook(content)
    except ParseError as exc:
        raise SupplyImportError("INVALID_FORMAT", str(exc)) from exc

    current_app.logger.info(
        "Parsed %s: format=%s, %s rows", filename, detection.format, len(parsed_rows),
    )
    if not parsed_rows:
        raise SupplyImportError("VALIDATION_FAILED", "No valid data rows found in the file")

    awb = options["awb"] or detection.metadata.get("awb")
    supplier = options["supplier"] or detection.metadata.get("supplier")

    normalized, warnings = normalize_rows(parsed_rows)
    normalized = _apply_overrides(normalized, options["rowOverrides"])

    valid, errors, warnings = validate_rows(normalized, warnings)

    # Grades without a known length cannot become a variant
    mapped = []
    for row in valid:
        if variant_length(row) is None:
            errors.append({
                "row": row["rowIndex"],
                "field": "grade",
                "message": f"Unknown grade \"{row['grade']}\", set the length manually",
                "value": row["grade"],
            })
        else:
            mapped.append(row)
    valid = mapped

    invalid_rows: dict[int, str] = {}
    for error in errors:
        invalid_rows.setdefault(error["row"], error["message"])

    if options["costCalculationMode"] == "full":
        valid = apply_full_cost(valid, detection.metadata, options["fullCostParams"])
        cost_by_row = {row["rowIndex"]: row for row in valid}
        normalized = [cost_by_row.get(row["rowIndex"], row) for row in normalized]

    upsert_result = {
        "flowersCreated": 0,
        "flowersUpdated": 0,
        "variantsCreated": 0,
        "variantsUpdated": 0,
        "operations": [],
    }
    outcomes: dict[str, str] = {}

    try:
        if not dry_run and valid:
            upsert_result, outcomes, aggregation_warnings = upsert_rows(valid, options)
            warnings.extend(aggregation_warnings)

        if dry_run:
            status = "dry-run"
        elif errors and not valid:
            status = "failed"
        else:
            status = "success"

        supply = Supply(
            filename=filename,
            checksum=checksum,
            date_parsed=utcnow(),
            awb=awb,
            supplier=supplier,
            rows=_supply_rows(normalized, invalid_rows, outcomes, dry_run),
            supply_status=status,
            supply_errors=errors,
            supply_warnings=warnings,
            cost_calculation_mode=options["costCalculationMode"],
            full_cost_params=options["fullCostParams"],
            user_id=options["userId"],
        )
        db.session.add(supply)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Import %s finished: supply=%s status=%s valid=%s errors=%s",
        filename, supply.id, status, len(valid), len(errors),
    )

    if not dry_run and valid:
        invalidate_analytics_cache()

    return {
        "supplyId": supply.id,
        "status": status,
        "stats": {
            "totalRows": len(normalized),
            "validRows": len(valid),
            "flowersCreated": upsert_result["flowersCreated"],
            "flowersUpdated": upsert_result["flowersUpdated"],
            "variantsCreated": upsert_result["variantsCreated"],
            "variantsUpdated": upsert_result["variantsUpdated"],
        },
        "errors": errors,
        "warnings": warnings,
        "rows": normalized,
        "operations": upsert_result["operations"],
    }


# =============================================================================
# FOLLOW-UP OPERATIONS
# =============================================================================

def update_prices(prices) -> int:
    """
    Batch-set sale prices after an import review.

    Entries without a documentId or with a negative/non-numeric price are
    ignored.

    Returns:
        Number of variants updated.

    Raises:
        ValidationError: INVALID_INPUT when `prices` is not a non-empty list
    """
    if not isinstance(prices, list) or not prices:
        raise ValidationError("INVALID_INPUT", "Prices array is required")

    updated = 0
    for item in prices:
        if not isinstance(item, dict) or not item.get("documentId"):
            continue
        price = item.get("price")
        if not isinstance(price, (int, float)) or isinstance(price, bool) or price < 0:
            continue
        variant = db.session.query(Variant).filter_by(document_id=item["documentId"]).first()
        if variant is None:
            current_app.logger.warning("Price update skipped, variant %s not found", item["documentId"])
            continue
        variant.price = price
        updated += 1

    db.session.commit()
    current_app.logger.info("Updated %s variant prices", updated)
    if updated:
        invalidate_analytics_cache()
    return updated


def get_supply(supply_id: int) -> Supply:
    supply = db.session.get(Supply, supply_id)
    if supply is None:
        raise NotFoundError("NOT_FOUND", "Import not found")
    return supply
