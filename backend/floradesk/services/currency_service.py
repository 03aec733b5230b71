# Overview: Service-layer operations for the USD/UAH exchange rate (NBU feed, cache, manual override).

"""
Currency Service

WHY: Supplier invoices are priced in USD; sale prices are set in UAH. The
importer converts cost prices with the current rate.

PRIORITY:
1. Manual rate set by an administrator (until cleared)
2. NBU rate cached less than USD_RATE_CACHE_SECONDS ago
3. Fresh NBU rate
4. Last cached NBU rate when the fetch fails
5. USD_FALLBACK_RATE
"""

from __future__ import annotations

import threading
import time
from datetime import datetime

import httpx
from flask import current_app

from ..time_utils import local_date_string
from ..validation import ApiError, ValidationError, coerce_number


class CurrencyError(ApiError):
    """Raised when the NBU feed returns an unusable response."""
    status_code = 502


_state_lock = threading.Lock()
_cache: dict | None = None  # {"rate", "date", "fetched_at" (monotonic)}
_manual: dict | None = None  # {"rate", "date"}


def _nbu_date_to_iso(value: str | None) -> str:
    """NBU sends DD.MM.YYYY; the API exposes YYYY-MM-DD."""
    if not value:
        return local_date_string()
    try:
        return datetime.strptime(value, "%d.%m.%Y").strftime("%Y-%m-%d")
    except ValueError:
        return value


def fetch_usd_rate_from_nbu(client: httpx.Client | None = None) -> dict:
    """
    Fetch today's official USD rate from the National Bank of Ukraine.

    Args:
        client: optional httpx.Client (tests inject one with a MockTransport)

    Returns:
        {"rate": float, "date": "YYYY-MM-DD"}

    Raises:
        CurrencyError: non-2xx response, empty list or malformed payload
        httpx.HTTPError: network failure
    """
    url = current_app.config["NBU_USD_URL"]
    timeout = current_app.config.get("NBU_TIMEOUT_SECONDS", 10.0)

    owns_client = client is None
    client = client or httpx.Client(timeout=timeout)
    try:
        response = client.get(url, headers={"Accept": "application/json"})
    finally:
        if owns_client:
            client.close()

    if response.status_code != 200:
        raise CurrencyError("NBU_HTTP_ERROR", f"NBU API returned status {response.status_code}")

    payload = response.json()
    if not isinstance(payload, list) or not payload:
        raise CurrencyError("NBU_EMPTY_RESPONSE", "NBU API returned no USD rate")

    entry = payload[0]
    try:
        rate = float(entry["rate"])
    except (KeyError, TypeError, ValueError):
        raise CurrencyError("NBU_BAD_RESPONSE", "NBU API returned a malformed rate")

    return {"rate": rate, "date": _nbu_date_to_iso(entry.get("exchangedate"))}


# =============================================================================
# MANUAL RATE
# =============================================================================

def set_manual_usd_rate(rate) -> dict | None:
    """
    Set (or with None clear) the administrator override.

    Raises:
        ValidationError: rate is not a positive number
    """
    global _manual
    if rate is None:
        with _state_lock:
            _manual = None
        current_app.logger.info("Manual USD rate cleared")
        return None

    value = coerce_number(rate, "rate", code="INVALID_RATE")
    if value <= 0:
        raise ValidationError("INVALID_RATE", "rate must be a positive number")
    with _state_lock:
        _manual = {"rate": value, "date": local_date_string()}
    current_app.logger.info("Manual USD rate set to %s", value)
    return dict(_manual)


def get_manual_usd_rate() -> dict | None:
    with _state_lock:
        return dict(_manual) if _manual else None


def clear_rate_cache() -> None:
    """Forget both the cached NBU rate and the manual override."""
    global _cache, _manual
    with _state_lock:
        _cache = None
        _manual = None


# =============================================================================
# RATE LOOKUP
# =============================================================================

def get_usd_rate_info(client: httpx.Client | None = None) -> dict:
    """
    Current USD rate with its provenance.

    Returns:
        {"rate", "date", "source": manual | cache | NBU | fallback,
         "cached": bool, "isManual": bool}
    """
    global _cache

    manual = get_manual_usd_rate()
    if manual:
        return {**manual, "source": "manual", "cached": False, "isManual": True}

    ttl = current_app.config.get("USD_RATE_CACHE_SECONDS", 3600)
    with _state_lock:
        cache = dict(_cache) if _cache else None
    if cache and time.monotonic() - cache["fetched_at"] < ttl:
        return {"rate": cache["rate"], "date": cache["date"], "source": "cache", "cached": True, "isManual": False}

    try:
        fresh = fetch_usd_rate_from_nbu(client)
    except (httpx.HTTPError, CurrencyError, ValueError) as exc:
        current_app.logger.warning("NBU rate fetch failed: %s", exc)
        if cache:
            return {"rate": cache["rate"], "date": cache["date"], "source": "cache", "cached": True, "isManual": False}
        return {
            "rate": current_app.config["USD_FALLBACK_RATE"],
            "date": local_date_string(),
            "source": "fallback",
            "cached": False,
            "isManual": False,
        }

    with _state_lock:
        _cache = {**fresh, "fetched_at": time.monotonic()}
    current_app.logger.info("Fetched USD rate from NBU: %s (%s)", fresh["rate"], fresh["date"])
    return {**fresh, "source": "NBU", "cached": False, "isManual": False}


def get_usd_rate(client: httpx.Client | None = None) -> float:
    return get_usd_rate_info(client)["rate"]
