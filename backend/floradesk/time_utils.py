from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with milliseconds and trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc)
    return dt_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# SHOP-LOCAL CALENDAR
# =============================================================================

def shop_zone():
    """Timezone that defines the shop's calendar day (SHIFT_TIMEZONE)."""
    name = "UTC"
    if has_app_context():
        name = current_app.config.get("SHIFT_TIMEZONE") or "UTC"
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def to_local(dt: datetime) -> datetime:
    """UTC-naive -> aware datetime in the shop zone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(shop_zone())


def local_date_string(dt: Optional[datetime] = None) -> str:
    """Shop-local calendar date as YYYY-MM-DD (defaults to now)."""
    return to_local(dt or utcnow()).strftime("%Y-%m-%d")


def local_midnight_utc(day: date) -> datetime:
    """Start of a shop-local calendar day, as UTC-naive."""
    start = datetime(day.year, day.month, day.day, tzinfo=shop_zone())
    return start.astimezone(timezone.utc).replace(tzinfo=None)


def local_month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """
    UTC-naive [start, end) of a shop-local month.

    Args:
        year: four-digit year
        month: 1..12
    """
    start = local_midnight_utc(date(year, month, 1))
    if month == 12:
        end = local_midnight_utc(date(year + 1, 1, 1))
    else:
        end = local_midnight_utc(date(year, month + 1, 1))
    return start, end


def days_ago(days: int) -> datetime:
    return utcnow() - timedelta(days=days)
