# backend/floradesk/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/floradesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///floradesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    APP_ENV = os.environ.get("APP_ENV", "development")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Two token realms: shop users and administrators
    JWT_SECRET = os.environ.get("JWT_SECRET", "dev-users-jwt-secret-change-me-0000")
    ADMIN_JWT_SECRET = os.environ.get("ADMIN_JWT_SECRET", "dev-admin-jwt-secret-change-me-0000")
    JWT_EXPIRES_DAYS = int(os.environ.get("JWT_EXPIRES_DAYS", "30"))
    ADMIN_JWT_EXPIRES_DAYS = int(os.environ.get("ADMIN_JWT_EXPIRES_DAYS", "30"))

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
        ).split(",")
        if origin.strip()
    ]

    # Shifts are calendar days in the shop's zone
    SHIFT_TIMEZONE = os.environ.get("SHIFT_TIMEZONE", "Europe/Kyiv")

    NBU_USD_URL = os.environ.get(
        "NBU_USD_URL",
        "https://bank.gov.ua/NBUStatService/v1/statdirectory/exchange?valcode=USD&json",
    )
    NBU_TIMEOUT_SECONDS = _env_float("NBU_TIMEOUT_SECONDS", 10.0)
    USD_FALLBACK_RATE = _env_float("USD_FALLBACK_RATE", 41.5)
    USD_RATE_CACHE_SECONDS = int(os.environ.get("USD_RATE_CACHE_SECONDS", "3600"))
    USD_MANUAL_RATE = _env_float("USD_MANUAL_RATE", None)

    ANALYTICS_CACHE_SECONDS = int(os.environ.get("ANALYTICS_CACHE_SECONDS", "180"))
    DEFAULT_SALE_MARGIN_PERCENT = _env_float("DEFAULT_SALE_MARGIN_PERCENT", 10.0)

    MAX_CONTENT_LENGTH = 10 * 1024 * 1024
