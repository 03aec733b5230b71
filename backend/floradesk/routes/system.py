# Overview: Flask API routes for system health.

"""
System health endpoint.

Used by the load balancer and by deploy scripts; public.
"""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


system_bp = Blueprint("system", __name__)

_STARTED_AT = time.monotonic()


def check_database_health() -> dict:
    """Round-trip a trivial query. Returns dict with status and latency."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health_route():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "error",
        "timestamp": to_utc_z(utcnow()),
        "env": current_app.config.get("APP_ENV", "development"),
        "uptime": round(time.monotonic() - _STARTED_AT, 1),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503
