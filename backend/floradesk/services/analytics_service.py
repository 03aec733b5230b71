# Overview: Service-layer operations for analytics; aggregates shift activity logs into dashboard figures.

"""
Analytics Service

WHY: The shift activity log is the single source of truth for what
happened at the counter (sales, write-offs, deletions, supplies). All
sales figures are computed from it; stock figures come from live variants.

CACHING: The full dashboard of the current month is cached in memory for
ANALYTICS_CACHE_SECONDS. Any operation that changes sales, stock,
customers or a shift activity log calls invalidate_analytics_cache().

MONTHS: `month` is 0-11 on the wire (January = 0). Day and month
boundaries are shop-local (SHIFT_TIMEZONE).
"""

from __future__ import annotations

import threading
import time
from calendar import monthrange
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Flower, Shift, Supply, Transaction, Variant
from ..time_utils import (
    local_midnight_utc,
    local_month_bounds,
    parse_iso_datetime,
    to_local,
    to_utc_z,
    utcnow,
)
from ..validation import ApiError, round_half_up


class AnalyticsError(ApiError):
    """Raised for invalid analytics query parameters."""
    pass


PERIODS = ("day", "week", "month")
WEEKDAY_LABELS = ["Нд", "Пн", "Вт", "Ср", "Чт", "Пт", "Сб"]
CATEGORY_COLORS = ["bg-emerald-500", "bg-emerald-400", "bg-emerald-300", "bg-amber-400", "bg-slate-300"]
WRITE_OFF_REASONS = ("damage", "expiry", "adjustment", "other")

_cache: dict = {}
_cache_lock = threading.Lock()


# =============================================================================
# CACHE
# =============================================================================

def invalidate_analytics_cache() -> None:
    """Drop cached dashboard data (call after sales, stock or customer changes)."""
    with _cache_lock:
        _cache.clear()
    current_app.logger.debug("Analytics cache invalidated")


def _cached(key: str):
    ttl = current_app.config.get("ANALYTICS_CACHE_SECONDS", 180)
    with _cache_lock:
        entry = _cache.get(key)
    if entry and time.monotonic() - entry[0] < ttl:
        return entry[1]
    return None


def _store(key: str, data) -> None:
    with _cache_lock:
        _cache[key] = (time.monotonic(), data)


# =============================================================================
# HELPERS
# =============================================================================

def format_uk_number(value) -> str:
    """
    Number formatted the way uk-UA locale renders it:
    non-breaking-space thousands separator, decimal comma, at most 3 decimals.
    """
    rounded = round_half_up(value, 3)
    negative = rounded < 0
    integer_part, _, fraction = f"{abs(rounded):.3f}".partition(".")
    groups = []
    while len(integer_part) > 3:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    groups.insert(0, integer_part)
    text = "\u00a0".join(groups)
    fraction = fraction.rstrip("0")
    if fraction:
        text = f"{text},{fraction}"
    return f"-{text}" if negative else text


def _signed_percent(value: int) -> str:
    return f"+{value}%" if value >= 0 else f"{value}%"


def _percent_change(current: float, previous: float) -> int:
    if previous <= 0:
        return 0
    return round_half_up((current - previous) / previous * 100)


def _activity_time(activity: dict) -> datetime | None:
    try:
        return parse_iso_datetime(activity.get("timestamp"))
    except (TypeError, ValueError):
        return None


def _details(activity: dict) -> dict:
    return activity.get("details") or {}


def _items_qty(items) -> int:
    return sum(int(item.get("qty") or 0) for item in items or [])


def _variants_stock(variants) -> int:
    return sum(int(v.get("stock") or 0) for v in variants or [])


def _iter_activities(shifts, types: tuple[str, ...] | None = None):
    for shift in shifts:
        for activity in shift.activities or []:
            if types is None or activity.get("type") in types:
                yield activity


def _shifts_between(start: datetime | None = None, end: datetime | None = None) -> list[Shift]:
    query = db.session.query(Shift)
    if start is not None:
        query = query.filter(Shift.started_at >= start)
    if end is not None:
        query = query.filter(Shift.started_at < end)
    return query.all()


def resolve_month(year: int | None, month: int | None) -> tuple[int, int]:
    """
    Validate (year, month 0-11) and fill defaults from the shop-local today.

    Returns:
        (year, month0)
    """
    today = to_local(utcnow())
    year = today.year if year is None else year
    month = today.month - 1 if month is None else month
    if not 0 <= month <= 11:
        raise AnalyticsError("INVALID_MONTH", "month must be between 0 and 11")
    if not 2000 <= year <= 2100:
        raise AnalyticsError("INVALID_YEAR", "year must be between 2000 and 2100")
    return year, month


def _month_window(year: int, month0: int) -> tuple[datetime, datetime]:
    return local_month_bounds(year, month0 + 1)


def _published_variants() -> list[Variant]:
    return (
        db.session.query(Variant)
        .join(Flower)
        .filter(Flower.published_at.isnot(None))
        .order_by(Variant.stock.asc(), Variant.id.asc())
        .all()
    )


# =============================================================================
# STOCK & SALES
# =============================================================================

def get_stock_levels() -> list[dict]:
    """Variants of published flowers, lowest stock first."""
    return [
        {
            "flowerSlug": v.flower.slug or "unknown",
            "flowerName": v.flower.name or "Unknown",
            "length": v.length,
            "stock": v.stock,
            "price": v.price or 0,
            "value": round(v.stock * (v.price or 0), 2),
        }
        for v in _published_variants()
    ]


def get_sales_metrics(period: str = "week") -> dict:
    """
    Sales totals since the start of the period.

    day = since shop-local midnight, week = last 7 days, month = since the
    first of the shop-local month.
    """
    if period not in PERIODS:
        raise AnalyticsError("INVALID_PERIOD", "period must be one of: day, week, month")

    now = utcnow()
    today = to_local(now).date()
    if period == "day":
        start = local_midnight_utc(today)
    elif period == "week":
        start = now - timedelta(days=7)
    else:
        start = local_midnight_utc(today.replace(day=1))

    total_sales = 0
    total_amount = 0
    items_sold = 0
    for activity in _iter_activities(_shifts_between(start - timedelta(days=1)), ("sale",)):
        ts = _activity_time(activity)
        if ts is None or ts < start:
            continue
        details = _details(activity)
        total_sales += 1
        total_amount += details.get("totalAmount") or 0
        items_sold += _items_qty(details.get("items"))

    return {
        "period": period,
        "totalSales": total_sales,
        "totalAmount": total_amount,
        "avgOrderValue": round_half_up(total_amount / total_sales) if total_sales else 0,
        "itemsSold": items_sold,
    }


# =============================================================================
# WRITE-OFFS
# =============================================================================

def get_write_off_summary() -> dict:
    """
    All-time write-offs by reason. Deleting a product that still had stock
    counts as a write-off with reason "other".
    """
    by_reason = {reason: 0 for reason in WRITE_OFF_REASONS}
    total_items = 0
    total_write_offs = 0
    write_offs = []

    for activity in _iter_activities(_shifts_between(), ("writeOff", "productDelete")):
        details = _details(activity)
        if activity.get("type") == "writeOff":
            reason = details.get("reason") or "other"
            qty = _items_qty(details.get("items"))
            total_write_offs += 1
            by_reason[reason] = by_reason.get(reason, 0) + qty
            total_items += qty
            write_offs.append(activity)
        else:
            qty = _variants_stock(details.get("variants"))
            if qty > 0:
                total_write_offs += 1
                by_reason["other"] += qty
                total_items += qty

    write_offs.sort(key=lambda a: _activity_time(a) or datetime.min, reverse=True)
    recent = []
    for activity in write_offs[:10]:
        details = _details(activity)
        items = details.get("items") or []
        item = items[0] if items else {}
        recent.append({
            "date": activity.get("timestamp"),
            "flowerName": item.get("name") or item.get("flowerName") or "Unknown",
            "length": item.get("length") or 0,
            "qty": item.get("qty") or 0,
            "reason": details.get("reason") or "other",
        })

    return {
        "totalWriteOffs": total_write_offs,
        "totalItems": total_items,
        "byReason": by_reason,
        "recentWriteOffs": recent,
    }


def get_top_write_off_flowers() -> list[dict]:
    """Top 5 flowers by written-off quantity (all time)."""
    per_flower: dict[str, dict] = {}
    total_qty = 0

    for activity in _iter_activities(_shifts_between(), ("writeOff", "productDelete")):
        details = _details(activity)
        if activity.get("type") == "writeOff":
            for item in details.get("items") or []:
                name = item.get("name") or item.get("flowerName") or "Unknown"
                qty = int(item.get("qty") or 0)
                entry = per_flower.setdefault(name, {"qty": 0, "amount": 0})
                entry["qty"] += qty
                entry["amount"] += qty * (item.get("price") or 0)
                total_qty += qty
        else:
            variants = details.get("variants") or []
            qty = _variants_stock(variants)
            if qty > 0:
                name = details.get("productName") or "Unknown"
                entry = per_flower.setdefault(name, {"qty": 0, "amount": 0})
                entry["qty"] += qty
                entry["amount"] += sum((v.get("stock") or 0) * (v.get("price") or 0) for v in variants)
                total_qty += qty

    ranked = sorted(per_flower.items(), key=lambda kv: kv[1]["qty"], reverse=True)[:5]
    return [
        {
            "name": name,
            "totalQty": data["qty"],
            "totalAmount": data["amount"],
            "percentage": round_half_up(data["qty"] / total_qty * 100) if total_qty else 0,
        }
        for name, data in ranked
    ]


# =============================================================================
# CUSTOMERS
# =============================================================================

def get_top_customers(limit: int = 10) -> list[dict]:
    """Customers by total spent, with the date of their latest transaction."""
    customers = (
        db.session.query(Customer)
        .order_by(Customer.total_spent.desc(), Customer.id.asc())
        .limit(limit)
        .all()
    )
    last_orders = dict(
        db.session.query(Transaction.customer_id, func.max(Transaction.date))
        .filter(Transaction.customer_id.in_([c.id for c in customers]))
        .group_by(Transaction.customer_id)
        .all()
    ) if customers else {}

    return [
        {
            "id": str(c.id),
            "documentId": c.document_id,
            "name": c.name,
            "type": c.type or "Regular",
            "totalSpent": c.total_spent or 0,
            "orderCount": c.order_count or 0,
            "lastOrderDate": to_utc_z(last_orders.get(c.id)),
        }
        for c in customers
    ]


# =============================================================================
# MONTHLY BREAKDOWNS
# =============================================================================

def _month_activities(year: int, month0: int, types: tuple[str, ...]):
    """Activities of shifts started in the month, with their shop-local time."""
    start, end = _month_window(year, month0)
    for activity in _iter_activities(_shifts_between(start, end), types):
        ts = _activity_time(activity)
        if ts is not None:
            yield activity, to_local(ts)


def get_daily_sales(year: int | None = None, month: int | None = None) -> list[dict]:
    """
    One row per day of the month: orders, revenue, average check, a
    high/mid/low load status, written-off stems and supply value.
    """
    year, month0 = resolve_month(year, month)
    daily: dict[str, dict] = {}

    for activity, local_ts in _month_activities(year, month0, ("sale", "writeOff", "productDelete", "supply")):
        key = local_ts.strftime("%d.%m")
        day = daily.setdefault(key, {"orders": 0, "revenue": 0, "writeOffs": 0, "supplyAmount": 0})
        details = _details(activity)
        kind = activity.get("type")
        if kind == "sale":
            day["orders"] += 1
            day["revenue"] += details.get("totalAmount") or 0
        elif kind == "writeOff":
            day["writeOffs"] += _items_qty(details.get("items"))
        elif kind == "productDelete":
            day["writeOffs"] += _variants_stock(details.get("variants"))
        else:
            day["supplyAmount"] += sum(
                ((item.get("stockAfter") or 0) - (item.get("stockBefore") or 0)) * (item.get("priceAfter") or 0)
                for item in details.get("supplyItems") or []
            )

    rows = []
    for day_number in range(1, monthrange(year, month0 + 1)[1] + 1):
        current = date(year, month0 + 1, day_number)
        key = current.strftime("%d.%m")
        data = daily.get(key, {"orders": 0, "revenue": 0, "writeOffs": 0, "supplyAmount": 0})
        orders = data["orders"]
        if orders >= 7:
            status = "high"
        elif orders >= 4:
            status = "mid"
        else:
            status = "low"
        rows.append({
            "date": key,
            # isoweekday: Monday=1 .. Sunday=7
            "day": WEEKDAY_LABELS[current.isoweekday() % 7],
            "orders": orders,
            "revenue": data["revenue"],
            "avg": round_half_up(data["revenue"] / orders) if orders else 0,
            "status": status,
            "writeOffs": data["writeOffs"],
            "supplyAmount": data["supplyAmount"],
        })
    return rows


def _weekly(year: int, month0: int, value_of) -> list:
    # Days 29-31 belong to the fourth week
    weeks = [0, 0, 0, 0]
    for activity, local_ts in _month_activities(year, month0, ("sale",)):
        weeks[min((local_ts.day - 1) // 7, 3)] += value_of(activity)
    return weeks


def get_weekly_revenue(year: int | None = None, month: int | None = None) -> list:
    year, month0 = resolve_month(year, month)
    return _weekly(year, month0, lambda a: _details(a).get("totalAmount") or 0)


def get_orders_per_week(year: int | None = None, month: int | None = None) -> list[int]:
    year, month0 = resolve_month(year, month)
    return _weekly(year, month0, lambda a: 1)


def _month_sales(year: int, month0: int) -> tuple[float, int]:
    revenue, orders = 0, 0
    start, end = _month_window(year, month0)
    for activity in _iter_activities(_shifts_between(start, end), ("sale",)):
        orders += 1
        revenue += _details(activity).get("totalAmount") or 0
    return revenue, orders


def get_kpis(year: int | None = None, month: int | None = None) -> list[dict]:
    """Headline cards: revenue, orders, average check, customers, stock."""
    year, month0 = resolve_month(year, month)
    prev_year, prev_month0 = (year - 1, 11) if month0 == 0 else (year, month0 - 1)

    revenue, orders = _month_sales(year, month0)
    last_revenue, last_orders = _month_sales(prev_year, prev_month0)

    revenue_change = _percent_change(revenue, last_revenue)
    orders_change = _percent_change(orders, last_orders)
    avg_current = round_half_up(revenue / orders) if orders else 0
    avg_last = round_half_up(last_revenue / last_orders) if last_orders else 0
    avg_change = _percent_change(avg_current, avg_last)

    month_start, _ = _month_window(year, month0)
    total_customers = db.session.query(func.count(Customer.id)).scalar() or 0
    new_customers = (
        db.session.query(func.count(Customer.id))
        .filter(Customer.created_at >= month_start)
        .scalar()
        or 0
    )

    variants = _published_variants()
    total_stock = sum(v.stock or 0 for v in variants)
    stock_value = sum((v.stock or 0) * (v.price or 0) for v in variants)

    return [
        {
            "label": "Виручка",
            "value": f"{format_uk_number(revenue)} грн",
            "change": _signed_percent(revenue_change),
            "trend": "up" if revenue_change >= 0 else "down",
        },
        {
            "label": "Замовлень",
            "value": str(orders),
            "change": _signed_percent(orders_change),
            "trend": "up" if orders_change >= 0 else "down",
        },
        {
            "label": "Середній чек",
            "value": f"{format_uk_number(avg_current)} грн",
            "change": _signed_percent(avg_change),
            "trend": "up" if avg_change >= 0 else "down",
        },
        {
            "label": "Клієнтів",
            "value": str(total_customers),
            "change": f"+{new_customers} нових",
            "trend": "up",
        },
        {
            "label": "На складі",
            "value": f"{format_uk_number(total_stock)} шт",
            "change": f"{format_uk_number(stock_value)} грн",
            "trend": "neutral",
        },
    ]


def get_category_split() -> list[dict]:
    """Top 5 flowers by sold value as a share of all sales (all time)."""
    per_flower: dict[str, float] = {}
    total = 0
    for activity in _iter_activities(_shifts_between(), ("sale",)):
        for item in _details(activity).get("items") or []:
            name = item.get("name") or "Unknown"
            amount = (item.get("qty") or 0) * (item.get("price") or 0)
            per_flower[name] = per_flower.get(name, 0) + amount
            total += amount

    ranked = sorted(per_flower.items(), key=lambda kv: kv[1], reverse=True)[:5]
    return [
        {
            "name": name,
            "value": round_half_up(amount / total * 100) if total else 0,
            "color": CATEGORY_COLORS[index] if index < len(CATEGORY_COLORS) else "bg-slate-300",
        }
        for index, (name, amount) in enumerate(ranked)
    ]


def get_top_products(category_split: list[dict] | None = None) -> list[dict]:
    split = category_split if category_split is not None else get_category_split()
    return [{"name": c["name"], "share": c["value"]} for c in split]


# =============================================================================
# PAYMENTS
# =============================================================================

def get_payment_summary(year: int | None = None, month: int | None = None) -> dict:
    """
    Paid vs expected sale value in the month. Sales logged without a
    payment status count as paid.
    """
    year, month0 = resolve_month(year, month)
    start, end = _month_window(year, month0)
    paid_amount, expected_amount = 0, 0
    for activity in _iter_activities(_shifts_between(start, end), ("sale",)):
        details = _details(activity)
        amount = details.get("totalAmount") or 0
        status = details.get("paymentStatus")
        if not status or status == "paid":
            paid_amount += amount
        elif status in ("expected", "pending"):
            expected_amount += amount
    return {"paidAmount": paid_amount, "expectedAmount": expected_amount}


def get_pending_payments() -> dict:
    """All-time unpaid sales, grouped by customer (largest debt first)."""
    total_pending = 0
    pending_orders = 0
    per_customer: dict[str, dict] = {}
    for activity in _iter_activities(_shifts_between(), ("sale",)):
        details = _details(activity)
        if details.get("paymentStatus") not in ("expected", "pending"):
            continue
        amount = details.get("totalAmount") or 0
        total_pending += amount
        pending_orders += 1
        customer_id = details.get("customerId")
        if customer_id:
            entry = per_customer.setdefault(
                str(customer_id), {"name": details.get("customerName") or "Unknown", "amount": 0}
            )
            entry["amount"] += amount

    by_customer = sorted(
        (
            {"customerId": cid, "customerName": data["name"], "amount": data["amount"]}
            for cid, data in per_customer.items()
        ),
        key=lambda row: row["amount"],
        reverse=True,
    )
    return {
        "totalPendingAmount": total_pending,
        "pendingOrdersCount": pending_orders,
        "pendingByCustomer": by_customer,
    }


# =============================================================================
# SUPPLY PLAN
# =============================================================================

def get_supply_plan() -> dict:
    """
    Next supply suggestion: a week after the last successful import, enough
    stems for two weeks of last week's sales.
    """
    last_supply = (
        db.session.query(Supply)
        .filter_by(supply_status="success")
        .order_by(Supply.date_parsed.desc())
        .first()
    )
    total_stock = db.session.query(func.coalesce(func.sum(Variant.stock), 0)).scalar() or 0
    week_items = get_sales_metrics("week")["itemsSold"]

    recommended = max(0, week_items * 2 - total_stock)
    base = last_supply.date_parsed if last_supply else utcnow()
    next_date = to_local(base + timedelta(days=7))
    days_of_stock = round_half_up(total_stock / (week_items / 7)) if week_items > 0 else 99

    return {
        "nextDate": next_date.strftime("%d.%m.%Y"),
        "recommended": f"~{recommended} шт",
        "currentStock": total_stock,
        "forecast": f"Вистачить на ~{days_of_stock} днів",
    }


# =============================================================================
# DASHBOARD
# =============================================================================

def get_dashboard(year: int | None = None, month: int | None = None) -> dict:
    """
    Everything the analytics screen shows, in one payload.

    Only the current month is cached.
    """
    year, month0 = resolve_month(year, month)
    today = to_local(utcnow())
    is_current_month = year == today.year and month0 == today.month - 1

    if is_current_month:
        cached = _cached("dashboard")
        if cached is not None:
            current_app.logger.debug("Returning cached dashboard data")
            return cached

    current_app.logger.debug("Computing dashboard data for %s-%02d", year, month0 + 1)
    category_split = get_category_split()
    payments = get_payment_summary(year, month0)
    pending = get_pending_payments()

    data = {
        "kpis": get_kpis(year, month0),
        "weeklyRevenue": get_weekly_revenue(year, month0),
        "ordersPerWeek": get_orders_per_week(year, month0),
        "categorySplit": category_split,
        "topProducts": get_top_products(category_split),
        "supplyPlan": get_supply_plan(),
        "dailySales": get_daily_sales(year, month0),
        "stockLevels": get_stock_levels(),
        "writeOffSummary": get_write_off_summary(),
        "topCustomers": get_top_customers(5),
        "topWriteOffFlowers": get_top_write_off_flowers(),
        "paidAmount": payments["paidAmount"],
        "expectedAmount": payments["expectedAmount"],
        "totalPendingAmount": pending["totalPendingAmount"],
        "pendingOrdersCount": pending["pendingOrdersCount"],
        "pendingByCustomer": pending["pendingByCustomer"],
    }

    if is_current_month:
        _store("dashboard", data)
    return data
