# Overview: Service-layer operations for shifts; one shift per shop-local day with an activity log.

"""
Shift Service

WHY: A shift is the shop's working day. The client logs every action
(sale, write-off, catalog edit, supply) as an activity on the shift of
the day the action happened; analytics are computed from these logs.

DESIGN PRINCIPLES:
- Shift = shop-local calendar date; created on first use, never by a cron
- Shifts of previous days still active are closed automatically (closed at
  23:59:59.999 of their own date) with a summary and inventory snapshot
- Adding an activity is idempotent by activity id
- A closed shift is reopened when a new activity arrives for it today
"""

from __future__ import annotations

import math
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Shift, Variant
from ..time_utils import local_date_string, parse_iso_datetime, utcnow
from ..validation import ApiError, ValidationError, round_half_up
from .analytics_service import invalidate_analytics_cache
from .concurrency import run_with_retry


class ShiftError(ApiError):
    """Raised for shift management errors."""
    pass


ACTIVITY_TYPES = (
    "sale",
    "writeOff",
    "productEdit",
    "productCreate",
    "productDelete",
    "paymentConfirm",
    "customerCreate",
    "customerDelete",
    "supply",
    "saleReturn",
)

# Activity details summed by analytics; must be numbers when present
NUMERIC_DETAIL_FIELDS = ("totalAmount", "qty")
LIST_DETAIL_FIELDS = ("items", "variants", "supplyItems")
NUMERIC_ENTRY_FIELDS = ("qty", "price", "stock", "stockBefore", "stockAfter", "priceAfter")


# =============================================================================
# SUMMARY & INVENTORY
# =============================================================================

def calculate_summary(activities: list[dict]) -> dict:
    """Totals of a shift's activity log."""
    summary = {
        "totalSales": 0,
        "totalSalesAmount": 0,
        "totalWriteOffs": 0,
        "totalWriteOffsQty": 0,
        "activitiesCount": 0,
    }
    for activity in activities or []:
        details = activity.get("details") or {}
        if activity.get("type") == "sale":
            summary["totalSales"] += 1
            summary["totalSalesAmount"] += details.get("totalAmount") or 0
        elif activity.get("type") == "writeOff":
            summary["totalWriteOffs"] += 1
            summary["totalWriteOffsQty"] += details.get("qty") or 0
        summary["activitiesCount"] += 1
    return summary


def current_inventory() -> dict:
    """Stock snapshot over all variants: {value (UAH, rounded), qty}."""
    total_value = 0.0
    total_qty = 0
    for stock, price in db.session.query(Variant.stock, Variant.price).all():
        total_qty += stock or 0
        total_value += (stock or 0) * (price or 0)
    return {"value": round_half_up(total_value), "qty": total_qty}


def _apply_close(shift: Shift, closed_at: datetime) -> None:
    summary = calculate_summary(shift.activities)
    inventory = current_inventory()
    shift.closed_at = closed_at
    shift.status = "closed"
    shift.summary = summary
    shift.total_sales = summary["totalSales"]
    shift.total_sales_amount = summary["totalSalesAmount"]
    shift.total_write_offs = summary["totalWriteOffs"]
    shift.total_write_offs_qty = summary["totalWriteOffsQty"]
    shift.inventory_value = inventory["value"]
    shift.inventory_qty = inventory["qty"]


# =============================================================================
# LIFECYCLE
# =============================================================================

def today_date() -> str:
    return local_date_string()


def auto_close_previous_shifts(today: str | None = None) -> int:
    """
    Close every active shift whose date is not today.

    Returns:
        Number of shifts closed.
    """
    today = today or today_date()

    def _op():
        stale = (
            db.session.query(Shift)
            .filter(Shift.status == "active", Shift.shift_date != today)
            .all()
        )
        for shift in stale:
            _apply_close(shift, datetime.fromisoformat(f"{shift.shift_date}T23:59:59.999000"))
            current_app.logger.info(
                "Auto-closed shift for %s with %s activities, inventory: %s items, %s UAH",
                shift.shift_date, len(shift.activities or []), shift.inventory_qty, shift.inventory_value,
            )
        db.session.commit()
        return len(stale)

    closed = run_with_retry(_op)
    if closed:
        invalidate_analytics_cache()
    return closed


def find_or_create_shift(target_date: str, initial_activity: dict | None = None,
                         started_at: datetime | None = None) -> tuple[Shift, bool]:
    """
    Find the shift of a date or create it.

    A closed shift found while an initial activity is given is reopened with
    that activity prepended.

    Returns:
        (shift, is_new)
    """
    def _op():
        shift = db.session.query(Shift).filter_by(shift_date=target_date).first()
        if shift is not None:
            if shift.status == "closed" and initial_activity:
                shift.status = "active"
                shift.closed_at = None
                shift.activities = [initial_activity, *(shift.activities or [])]
                db.session.commit()
                current_app.logger.info("Reopened shift for %s to add activity", target_date)
            return shift, False

        shift = Shift(
            shift_date=target_date,
            started_at=started_at or utcnow(),
            status="active",
            activities=[initial_activity] if initial_activity else [],
        )
        db.session.add(shift)
        try:
            db.session.commit()
        except IntegrityError:
            # Created concurrently by another request
            db.session.rollback()
            return db.session.query(Shift).filter_by(shift_date=target_date).one(), False
        current_app.logger.info("Created new shift for %s", target_date)
        return shift, True

    return run_with_retry(_op)


def get_current_shift() -> tuple[Shift, bool]:
    """Close stale shifts, then find or create today's shift."""
    today = today_date()
    auto_close_previous_shifts(today)
    return find_or_create_shift(today)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _validate_details(details: dict) -> None:
    for field in NUMERIC_DETAIL_FIELDS:
        if details.get(field) is not None and not _is_number(details[field]):
            raise ShiftError("INVALID_ACTIVITY", f"activity.details.{field} must be a number")
    for field in LIST_DETAIL_FIELDS:
        entries = details.get(field)
        if entries is None:
            continue
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise ShiftError("INVALID_ACTIVITY", f"activity.details.{field} must be a list of objects")
        for index, entry in enumerate(entries):
            for key in NUMERIC_ENTRY_FIELDS:
                if entry.get(key) is not None and not _is_number(entry[key]):
                    raise ShiftError(
                        "INVALID_ACTIVITY", f"activity.details.{field}[{index}].{key} must be a number",
                    )


def _validate_activity(activity) -> tuple[dict, datetime]:
    if not isinstance(activity, dict) or not activity.get("id") or not activity.get("type"):
        raise ShiftError("INVALID_ACTIVITY", "activity with id and type is required")
    if activity["type"] not in ACTIVITY_TYPES:
        raise ShiftError(
            "INVALID_ACTIVITY_TYPE",
            f"activity.type must be one of: {', '.join(ACTIVITY_TYPES)}",
        )
    raw_ts = activity.get("timestamp")
    if raw_ts in (None, ""):
        timestamp = utcnow()
        activity = {**activity, "timestamp": timestamp.isoformat(timespec="milliseconds") + "Z"}
    else:
        try:
            timestamp = parse_iso_datetime(str(raw_ts))
        except ValueError:
            raise ValidationError("INVALID_ACTIVITY", "activity.timestamp must be an ISO-8601 datetime")
    if isinstance(activity.get("details"), dict):
        _validate_details(activity["details"])
    else:
        activity = {**activity, "details": {}}
    return activity, timestamp


def add_activity(activity) -> tuple[Shift, bool]:
    """
    Log an activity on the shift of the day it happened.

    Returns:
        (shift, idempotent) where idempotent is True when an activity with
        the same id was already logged.

    Raises:
        ShiftError: INVALID_ACTIVITY / INVALID_ACTIVITY_TYPE (400)
    """
    activity, timestamp = _validate_activity(activity)
    target = local_date_string(timestamp)
    today = today_date()

    if target == today:
        auto_close_previous_shifts(today)

    def _op():
        shift = db.session.query(Shift).filter_by(shift_date=target).first()
        if shift is None:
            return None, False

        current = list(shift.activities or [])
        if any(a.get("id") == activity["id"] for a in current):
            return shift, True

        shift.activities = [activity, *current]
        if shift.status == "closed" and target == today:
            shift.status = "active"
            shift.closed_at = None
            current_app.logger.info("Reopened shift for %s to add activity", target)
        db.session.commit()
        return shift, False

    shift, idempotent = run_with_retry(_op)
    if shift is None:
        shift, is_new = find_or_create_shift(
            target,
            activity,
            started_at=None if target == today else timestamp,
        )
        if not is_new and not any(a.get("id") == activity["id"] for a in shift.activities or []):
            # Lost a creation race: log onto the shift the other request created
            return add_activity(activity)
    if not idempotent:
        invalidate_analytics_cache()
    current_app.logger.debug("Activity %s (%s) logged on shift %s", activity["id"], activity["type"], target)
    return shift, idempotent


def close_today(notes: str | None = None) -> tuple[Shift, str]:
    """
    Close today's shift.

    Returns:
        (shift, outcome) with outcome one of "closed", "notes_updated",
        "already_closed".

    Raises:
        ShiftError: NO_SHIFT_TODAY (404)
    """
    today = today_date()

    def _op():
        shift = db.session.query(Shift).filter_by(shift_date=today).first()
        if shift is None:
            raise ShiftError("NO_SHIFT_TODAY", "No shift found for today", status_code=404)

        if shift.status == "closed":
            if notes:
                shift.notes = notes
                db.session.commit()
                return shift, "notes_updated"
            return shift, "already_closed"

        _apply_close(shift, utcnow())
        shift.notes = notes
        db.session.commit()
        current_app.logger.info(
            "Closed shift for %s with %s activities", today, len(shift.activities or []),
        )
        return shift, "closed"

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_shifts(page: int = 1, page_size: int = 10) -> dict:
    """Shifts newest first, with page/pageSize pagination metadata."""
    if page < 1 or page_size < 1 or page_size > 100:
        raise ValidationError("INVALID_PAGINATION", "page must be >= 1 and pageSize between 1 and 100")
    query = db.session.query(Shift)
    total = query.count()
    shifts = (
        query.order_by(Shift.shift_date.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "data": [s.to_dict() for s in shifts],
        "meta": {
            "pagination": {
                "page": page,
                "pageSize": page_size,
                "pageCount": -(-total // page_size),
                "total": total,
            }
        },
    }


def get_shift(document_id: str) -> Shift:
    shift = db.session.query(Shift).filter_by(document_id=document_id).first()
    if shift is None:
        raise ShiftError("SHIFT_NOT_FOUND", "Shift not found", status_code=404)
    return shift
