# Overview: Excel supplier-invoice parser with Ross / Colombia / generic layout detection.

"""
Import Parser

WHY: Suppliers send invoices in a handful of spreadsheet layouts. The
parser finds the header (or the known fixed layout), extracts the
invoice metadata the cost calculation needs, and turns every data row
into a plain dict.

LAYOUTS:
- ross: Spanish headers (CULTIVOS, VARIEDAD, GRADO, TALLOS, PRECIO) in the
  first 10 rows; transport cost and total full boxes in the footer
- colombia: no header; first row carries the document number, date, AWB
  and the words price/total; columns are positional
- unknown: first of the first 10 rows that maps variety, units and price;
  otherwise columns 0..3 are variety, grade, units, price
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from ..validation import round_half_up


COLUMN_KEYWORDS = {
    "variety": ("variety", "variedad", "сорт", "назва", "name", "flower"),
    "type": ("type", "тип", "вид"),
    "grade": ("grade", "grado", "length", "height", "довжина", "розмір", "size", "cm", "см"),
    "units": ("units", "qty", "quantity", "tallos", "stems", "кількість", "шт", "stock"),
    "price": ("price", "precio", "ціна", "цена", "cost", "uah", "usd", "eur"),
    "total": ("total", "suma", "сума", "сумма", "amount"),
    "supplier": ("supplier", "farm", "cultivos", "постачальник", "ферма"),
    "awb": ("awb", "waybill", "накладна"),
    "recipient": ("recipient", "client", "отримувач", "клієнт"),
}

COLOMBIA_MAPPING = {
    "qbCode": 0,
    "variety": 1,
    "type": 2,
    "grade": 3,
    "units": 4,
    "supplier": 5,
    "recipient": 6,
    "price": 7,
    "total": 8,
    "awb": 9,
}

GENERIC_MAPPING = {"variety": 0, "grade": 1, "units": 2, "price": 3}

HEADER_SCAN_ROWS = 10

_ROSS_DATE = re.compile(r"(\d{1,2})[,./](\d{1,2})[,./](\d{4})")
_COLOMBIA_DATE = re.compile(r"(\d{1,2})[./](\d{1,2})[./](\d{4})")
_AWB = re.compile(r"\d{3}-\d{4}\s?\d{4}")
_NON_NUMERIC = re.compile(r"[^\d.,]")


class ParseError(Exception):
    """Raised when the workbook cannot be read or has no data."""
    pass


@dataclass
class FormatDetection:
    format: str
    mapping: dict[str, int]
    header_row: int
    data_start_row: int
    metadata: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# CELL HELPERS
# =============================================================================

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text(value) -> str:
    if value is None:
        return ""
    if _is_number(value) and float(value).is_integer():
        return str(int(value))
    return str(value)


def _cell(row: tuple, index: int | None):
    if index is None or index < 0 or index >= len(row):
        return None
    return row[index]


def _optional_text(row: tuple, index: int | None) -> str | None:
    if index is None or index < 0:
        return None
    return _text(_cell(row, index)).strip() or None


def parse_number(value) -> int:
    """Integer quantity; non-numeric text parses as 0."""
    if _is_number(value):
        return round_half_up(value)
    if not isinstance(value, str):
        return 0
    cleaned = _NON_NUMERIC.sub("", value).replace(",", ".", 1)
    try:
        return round_half_up(float(cleaned))
    except ValueError:
        return 0


def parse_decimal(value) -> float:
    """
    Price with 2 decimals. For text the last of ',' and '.' is the
    decimal separator ("1.234,50" and "1,234.50" both give 1234.5).
    """
    if _is_number(value):
        return round_half_up(value, 2)
    if not isinstance(value, str):
        return 0.0
    cleaned = _NON_NUMERIC.sub("", value)
    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma > last_dot:
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    elif last_dot > last_comma:
        cleaned = cleaned.replace(",", "")
    try:
        return round_half_up(float(cleaned), 2)
    except ValueError:
        return 0.0


def _match_date(pattern: re.Pattern, text: str) -> date | None:
    match = pattern.search(text)
    if not match:
        return None
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


# =============================================================================
# FORMAT DETECTION
# =============================================================================

def map_columns_from_header(header: tuple) -> dict[str, int]:
    """First keyword match per cell wins; later columns overwrite earlier ones."""
    mapping = {"variety": -1, "grade": -1, "units": -1, "price": -1}
    for col_idx, raw in enumerate(header):
        cell = _text(raw).lower().strip()
        if not cell:
            continue
        for field_name, keywords in COLUMN_KEYWORDS.items():
            if any(kw in cell for kw in keywords):
                mapping[field_name] = col_idx
                break
    return mapping


def _joined_lower(row: tuple) -> str:
    return "|".join(_text(c).lower() for c in row)


def _extract_ross_metadata(data: list[tuple], header_idx: int) -> dict:
    metadata: dict[str, Any] = {}

    for row in data[:header_idx]:
        for cell in row:
            if isinstance(cell, datetime):
                metadata["date"] = cell.date()
            elif isinstance(cell, date):
                metadata["date"] = cell
            elif isinstance(cell, str):
                parsed = _match_date(_ROSS_DATE, cell)
                if parsed:
                    metadata["date"] = parsed

    for row in data[header_idx + 1:]:
        for col_idx, cell in enumerate(row):
            if "transport" not in _text(cell).lower():
                continue
            right = [v for v in row[col_idx + 1:] if _is_number(v) and v > 0]
            if right:
                metadata["transport"] = right[0]
            else:
                anywhere = [v for v in row if _is_number(v) and v > 0]
                if anywhere:
                    metadata["transport"] = anywhere[-1]
            break

        first_cell = _text(_cell(row, 0)).lower().strip()
        if "total" in first_cell or first_cell in ("", "rosa", "rosas"):
            fb_value = _cell(row, 1)
            if _is_number(fb_value) and 0 < fb_value < 100:
                metadata["totalFB"] = fb_value
                # 0.5 FB (full box) = 1 physical box
                metadata["totalBoxes"] = round_half_up(fb_value * 2)

    return metadata


def _extract_colombia_metadata(first_row: tuple) -> dict:
    metadata: dict[str, Any] = {}
    for cell in first_row:
        if isinstance(cell, datetime):
            metadata["date"] = cell.date()
        elif _is_number(cell) and 1000 < cell < 10000:
            metadata["documentId"] = _text(cell)
        elif isinstance(cell, str):
            awb = _AWB.search(cell)
            if awb:
                metadata["awb"] = awb.group(0)
            parsed = _match_date(_COLOMBIA_DATE, cell)
            if parsed:
                metadata["date"] = parsed
    return metadata


def detect_format(data: list[tuple]) -> FormatDetection:
    for row_idx, row in enumerate(data[:HEADER_SCAN_ROWS]):
        joined = _joined_lower(row)
        if all(word in joined for word in ("cultivos", "variedad", "grado", "tallos")):
            return FormatDetection(
                format="ross",
                mapping=map_columns_from_header(row),
                header_row=row_idx,
                data_start_row=row_idx + 1,
                metadata=_extract_ross_metadata(data, row_idx),
            )

    first = _joined_lower(data[0])
    if ("цена" in first or "price" in first) and any(w in first for w in ("сумма", "total", "awb")):
        return FormatDetection(
            format="colombia",
            mapping=dict(COLOMBIA_MAPPING),
            header_row=0,
            data_start_row=1,
            metadata=_extract_colombia_metadata(data[0]),
        )

    for row_idx, row in enumerate(data[:HEADER_SCAN_ROWS]):
        if len(row) < 3:
            continue
        mapping = map_columns_from_header(row)
        if mapping["variety"] >= 0 and mapping["units"] >= 0 and mapping["price"] >= 0:
            return FormatDetection("unknown", mapping, row_idx, row_idx + 1)

    return FormatDetection("unknown", dict(GENERIC_MAPPING), -1, 0)


# =============================================================================
# ROW EXTRACTION
# =============================================================================

def _is_summary_row(row: tuple, fmt: str) -> bool:
    first_cell = _text(_cell(row, 0)).lower().strip()
    second_cell = _text(_cell(row, 1)).lower().strip()

    if fmt == "colombia":
        if first_cell == "total" or second_cell == "total":
            return True
        # HB/QB/FB are box codes; only a "total" elsewhere makes it a subtotal row
        if first_cell in ("hb", "qb", "fb") and any(
            _text(c).lower().strip() == "total" for c in row[1:]
        ):
            return True

    if fmt == "ross" and ("total" in first_cell or "total" in second_cell):
        return True

    return False


def _row_to_original(row: tuple, mapping: dict[str, int]) -> dict:
    original = {}
    for key, index in mapping.items():
        if index is not None and index >= 0:
            value = _cell(row, index)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            original[key] = value
    return original


def extract_rows(data: list[tuple], detection: FormatDetection) -> list[dict]:
    mapping = detection.mapping
    fmt = detection.format
    rows: list[dict] = []

    current_supplier: str | None = None
    current_box_id: str | None = None
    current_box_fb = None

    for row_idx in range(detection.data_start_row, len(data)):
        row = data[row_idx]
        if len(row) < 3 or _is_summary_row(row, fmt):
            continue

        variety = _cell(row, mapping.get("variety"))
        if variety is None or not _text(variety).strip():
            # Colombia: a blank variety with units and price continues the previous farm
            if not (fmt == "colombia" and _cell(row, mapping.get("units")) and _cell(row, mapping.get("price"))):
                continue

        supplier_idx = mapping.get("supplier", -1)
        if fmt in ("ross", "colombia") and supplier_idx >= 0:
            supplier_value = _text(_cell(row, supplier_idx)).strip()
            if supplier_value:
                current_supplier = supplier_value
                if fmt == "ross":
                    # CULTIVOS names the box; column 1 holds its FB share
                    current_box_id = supplier_value
                    fb_value = _cell(row, 1)
                    if _is_number(fb_value) and 0 < fb_value <= 1:
                        current_box_fb = fb_value

        original = _row_to_original(row, mapping)
        if fmt == "ross" and current_box_id:
            original["boxId"] = current_box_id
            original["boxFB"] = current_box_fb

        awb_idx = mapping.get("awb", -1)
        parsed = {
            "rowIndex": row_idx + 1,
            "original": original,
            "variety": _text(variety).strip(),
            "type": _optional_text(row, mapping.get("type")),
            "grade": _text(_cell(row, mapping.get("grade"))).strip(),
            "units": parse_number(_cell(row, mapping.get("units"))),
            "price": parse_decimal(_cell(row, mapping.get("price"))),
            "total": parse_decimal(_cell(row, mapping["total"])) if mapping.get("total", -1) >= 0 else None,
            "supplier": current_supplier,
            "awb": (_optional_text(row, awb_idx) if awb_idx >= 0 else None) or detection.metadata.get("awb"),
            "qbCode": _optional_text(row, mapping.get("qbCode")),
            "recipient": _optional_text(row, mapping.get("recipient")),
            "boxId": current_box_id if fmt == "ross" else None,
            "boxFB": current_box_fb if fmt == "ross" else None,
        }

        if parsed["units"] <= 0 or parsed["price"] <= 0:
            continue
        rows.append(parsed)

    return rows


def read_sheet(content: bytes) -> list[tuple]:
    """Values of the first worksheet with fully blank rows dropped."""
    from openpyxl import load_workbook

    try:
        wb = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    except Exception as exc:  # openpyxl raises zipfile/KeyError/ValueError variants
        raise ParseError(f"Cannot read Excel file: {exc}") from exc
    try:
        sheet = wb.worksheets[0]
        return [
            tuple(row)
            for row in sheet.iter_rows(values_only=True)
            if any(cell is not None and _text(cell).strip() for cell in row)
        ]
    finally:
        wb.close()


def parse_workbook(content: bytes) -> tuple[list[dict], FormatDetection]:
    """
    Parse an .xlsx invoice.

    Returns:
        (rows, detection)

    Raises:
        ParseError: unreadable workbook or empty first sheet
    """
    data = read_sheet(content)
    if not data:
        raise ParseError("Excel file is empty")
    detection = detect_format(data)
    return extract_rows(data, detection), detection
