# Overview: Stock guards, row locks and the retry loop shared by POS and shift services.

"""
Concurrency Helpers

WHY: Two counters can sell the last stems of a variant at the same moment,
and a shift row is read-modify-written by every logged activity. Stock is
therefore only ever changed with single-statement guarded updates, and
read-modify-write units run inside run_with_retry.

RETRY RULES:
- OperationalError ("database is locked", deadlock) and StaleDataError
  (version_id conflict on Customer / Shift) roll back and retry
- ApiError (CONCURRENT_MODIFICATION, validation) is a decision, not a
  transient failure: it propagates on the first attempt
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Variant

TRANSIENT_ERRORS = (OperationalError, StaleDataError)

_variants = Variant.__table__


# =============================================================================
# STOCK GUARDS
# =============================================================================

def decrement_stock(variant_id: int, qty: int) -> bool:
    """
    UPDATE variants SET stock = stock - qty WHERE id = ? AND stock >= qty.

    Returns:
        False when the guard matched no row (stock sold in the meantime or
        variant deleted); the caller must roll back its whole unit of work.
    """
    result = db.session.execute(
        update(_variants)
        .where(_variants.c.id == variant_id, _variants.c.stock >= qty)
        .values(stock=_variants.c.stock - qty)
    )
    return result.rowcount == 1


def restock(variant_id: int, qty: int) -> None:
    db.session.execute(
        update(_variants)
        .where(_variants.c.id == variant_id)
        .values(stock=_variants.c.stock + qty)
    )


def lock_for_update(query):
    """SELECT ... FOR UPDATE (a no-op on SQLite)."""
    return query.with_for_update()


# =============================================================================
# RETRY
# =============================================================================

def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of DB work, retrying transient conflicts.

    The session is rolled back before each retry, so `func` must re-read
    everything it mutates.
    """
    name = getattr(func, "__qualname__", "db operation")
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error("%s failed after %s attempts: %s", name, attempts, exc)
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            current_app.logger.warning(
                "%s hit %s (attempt %s/%s), retrying in %.2fs",
                name, type(exc).__name__, attempt, attempts, delay,
            )
            time.sleep(delay)
