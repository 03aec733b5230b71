# Overview: Validation of normalized invoice rows before they touch the catalog.

from __future__ import annotations


NAME_MIN = 2
NAME_MAX = 200
LENGTH_MIN = 1
LENGTH_MAX = 500
STOCK_MIN = 0
STOCK_MAX = 1_000_000
PRICE_MIN = 0.01
PRICE_MAX = 100_000


def _error(row: dict, field: str, message: str, value) -> dict:
    return {"row": row["rowIndex"], "field": field, "message": message, "value": value}


def validate_row(row: dict) -> list[dict]:
    errors: list[dict] = []

    name = row.get("flowerName") or ""
    if not name.strip():
        errors.append(_error(row, "name", "Flower name is required", name))
    elif len(name) < NAME_MIN:
        errors.append(_error(row, "name", f"Flower name must be at least {NAME_MIN} characters", name))
    elif len(name) > NAME_MAX:
        errors.append(_error(row, "name", f"Flower name must be at most {NAME_MAX} characters", name))

    if not (row.get("slug") or "").strip():
        errors.append(_error(row, "slug", "Slug is required", row.get("slug")))

    length = row.get("length")
    if length is not None:
        if length < LENGTH_MIN:
            errors.append(_error(row, "length", f"Length must be at least {LENGTH_MIN} cm", length))
        elif length > LENGTH_MAX:
            errors.append(_error(row, "length", f"Length must be at most {LENGTH_MAX} cm", length))
    elif not row.get("grade"):
        errors.append(_error(row, "length", "Either length or grade is required", None))

    stock = row.get("stock")
    if not isinstance(stock, (int, float)) or isinstance(stock, bool):
        errors.append(_error(row, "stock", "Stock must be a valid number", stock))
    elif stock < STOCK_MIN:
        errors.append(_error(row, "stock", f"Stock must be at least {STOCK_MIN}", stock))
    elif stock > STOCK_MAX:
        errors.append(_error(row, "stock", f"Stock must be at most {STOCK_MAX}", stock))

    price = row.get("price")
    if not isinstance(price, (int, float)) or isinstance(price, bool):
        errors.append(_error(row, "price", "Price must be a valid number", price))
    elif price < PRICE_MIN:
        errors.append(_error(row, "price", f"Price must be at least {PRICE_MIN}", price))
    elif price > PRICE_MAX:
        errors.append(_error(row, "price", f"Price must be at most {PRICE_MAX}", price))

    return errors


def duplicate_warnings(rows: list[dict]) -> list[dict]:
    """Rows whose hash repeats an earlier row of the same file."""
    warnings: list[dict] = []
    seen: dict[str, int] = {}
    for row in rows:
        first = seen.get(row["hash"])
        if first is None:
            seen[row["hash"]] = row["rowIndex"]
            continue
        size = row["length"] if row.get("length") is not None else row.get("grade")
        warnings.append({
            "row": row["rowIndex"],
            "field": "hash",
            "message": f"Duplicate of row {first}",
            "originalValue": row["hash"],
            "normalizedValue": f"Duplicate: {row['flowerName']} ({size})",
        })
    return warnings


def validate_rows(rows: list[dict], existing_warnings: list[dict] | None = None) -> tuple[list[dict], list[dict], list[dict]]:
    """
    Returns:
        (valid_rows, errors, warnings)
    """
    valid: list[dict] = []
    errors: list[dict] = []
    warnings = list(existing_warnings or [])
    for row in rows:
        row_errors = validate_row(row)
        if row_errors:
            errors.extend(row_errors)
        else:
            valid.append(row)
    warnings.extend(duplicate_warnings(valid))
    return valid, errors, warnings
