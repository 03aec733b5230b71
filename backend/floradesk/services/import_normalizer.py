# Overview: Normalization of parsed invoice rows (names, slugs, length/grade, stock, price, row hash).

from __future__ import annotations

import hashlib
import re

from ..validation import round_half_up
from .slug_service import slugify


TEXT_GRADES = ("jumbo", "premium", "select", "standard", "mini", "xl", "xxl")
MIN_LENGTH = 1
MAX_LENGTH = 500

_DIGITS = re.compile(r"(\d+)")
_SHORT_LATIN = re.compile(r"^[a-z]+$", re.IGNORECASE)


def _warning(row: int, field: str, message: str, original, normalized) -> dict:
    return {
        "row": row,
        "field": field,
        "message": message,
        "originalValue": original,
        "normalizedValue": normalized,
    }


def title_case(text: str) -> str:
    """'FREEDOM red' -> 'Freedom Red'; Latin words of 1-2 letters are upper-cased ('xl' -> 'XL')."""
    words = []
    for word in re.split(r"\s+", text.lower()):
        if not word:
            words.append(word)
        elif len(word) <= 2 and _SHORT_LATIN.match(word):
            words.append(word.upper())
        else:
            words.append(word[0].upper() + word[1:])
    return " ".join(words)


def _hash_part(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def compute_row_hash(flower_name: str, length, grade, stock, price, supplier, awb) -> str:
    """First 16 hex chars of sha256 over the normalized row fields."""
    data = "|".join(
        _hash_part(v)
        for v in (flower_name.lower(), length, grade, stock, price, supplier, awb)
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]


def normalize_flower_name(variety: str, type_: str | None, row_index: int) -> tuple[str, dict | None]:
    variety = variety or ""
    clean_variety = variety.strip()
    if not clean_variety:
        return "Unknown", None

    title_variety = title_case(clean_variety)
    flower_name = title_variety
    if type_ and type_.strip():
        # type is appended unless the variety already names it ("Rose Freedom" + "Rose")
        if type_.lower() not in title_variety.lower():
            flower_name = f"{title_variety} {title_case(type_.strip())}"

    original_name = f"{variety} {type_}" if type_ else variety
    if original_name != flower_name:
        return flower_name, _warning(row_index, "name", "Name normalized to Title Case", original_name, flower_name)
    return flower_name, None


def normalize_grade(grade_text: str, row_index: int) -> tuple[int | None, str | None, dict | None]:
    """
    Returns:
        (length, grade, warning): "90cm" -> (90, None), "jumbo" -> (None, "Jumbo"),
        "900" -> (None, "900") with an out-of-range warning.
    """
    cleaned = (grade_text or "").lower().strip()

    if any(g in cleaned for g in TEXT_GRADES):
        return None, title_case(cleaned), None

    match = _DIGITS.search(cleaned)
    if match:
        length = int(match.group(1))
        if length < MIN_LENGTH or length > MAX_LENGTH:
            return None, cleaned, _warning(
                row_index, "length",
                f"Length {length} out of range ({MIN_LENGTH}-{MAX_LENGTH}), treating as grade",
                grade_text, cleaned,
            )
        return length, None, None

    if not cleaned:
        return None, None, None
    return None, cleaned, _warning(
        row_index, "length", "Could not parse as number, treating as grade", grade_text, cleaned,
    )


def normalize_row(row: dict) -> tuple[dict, list[dict]]:
    """Turn one parser row into a normalized row plus its warnings."""
    warnings: list[dict] = []
    row_index = row["rowIndex"]

    flower_name, warning = normalize_flower_name(row.get("variety") or "", row.get("type"), row_index)
    if warning:
        warnings.append(warning)

    length, grade, warning = normalize_grade(row.get("grade") or "", row_index)
    if warning:
        warnings.append(warning)

    units = row.get("units") or 0
    stock = round_half_up(abs(units))
    if stock != units:
        warnings.append(_warning(row_index, "stock", "Stock rounded to integer", units, stock))

    price = row.get("price") or 0
    normalized_price = round_half_up(abs(price), 2)
    if normalized_price != price:
        warnings.append(_warning(row_index, "price", "Price normalized", price, normalized_price))

    supplier = row.get("supplier")
    awb = row.get("awb")
    normalized = {
        "rowIndex": row_index,
        "original": row.get("original") or {},
        "flowerName": flower_name,
        "slug": slugify(flower_name),
        "length": length,
        "grade": grade,
        "stock": stock,
        "price": normalized_price,
        "supplier": supplier,
        "awb": awb,
        "hash": compute_row_hash(flower_name, length, grade, stock, normalized_price, supplier, awb),
    }
    return normalized, warnings


def normalize_rows(rows: list[dict]) -> tuple[list[dict], list[dict]]:
    normalized: list[dict] = []
    warnings: list[dict] = []
    for row in rows:
        result, row_warnings = normalize_row(row)
        normalized.append(result)
        warnings.extend(row_warnings)
    return normalized, warnings
