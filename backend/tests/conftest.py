"""
Pytest fixtures for Floradesk backend tests.

Provides an in-memory database, the test client, auth headers for both
token realms, and small factories for catalog and customer data.
"""

import pytest
from sqlalchemy.pool import StaticPool

from floradesk import create_app
from floradesk.config import Config
from floradesk.extensions import db
from floradesk.services import flower_service, customer_service
from floradesk.services.analytics_service import invalidate_analytics_cache
from floradesk.services.auth_service import issue_token, USERS_REALM, ADMIN_REALM
from floradesk.services.currency_service import clear_rate_cache


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "poolclass": StaticPool,
        "connect_args": {"check_same_thread": False},
    }
    JWT_SECRET = "test-users-jwt-secret-0123456789abcdef"
    ADMIN_JWT_SECRET = "test-admin-jwt-secret-0123456789abcdef"
    SHIFT_TIMEZONE = "UTC"
    NBU_USD_URL = "https://nbu.test/exchange?valcode=USD&json"
    USD_MANUAL_RATE = None
    USD_FALLBACK_RATE = 41.5
    ANALYTICS_CACHE_SECONDS = 180
    DEFAULT_SALE_MARGIN_PERCENT = 10.0
    LOG_LEVEL = "DEBUG"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table and in-memory cache before the test."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    invalidate_analytics_cache()
    clear_rate_cache()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Bearer header of a shop user (users realm)."""
    return {'Authorization': f'Bearer {issue_token(1, USERS_REALM)}'}


@pytest.fixture(scope='function')
def admin_headers(db_session):
    """Bearer header of an administrator (admin realm)."""
    return {'Authorization': f'Bearer {issue_token(1, ADMIN_REALM)}'}


@pytest.fixture(scope='function')
def make_flower(db_session):
    """Factory: make_flower("Троянда червона", [(60, 100, 75.0)], published=True)."""
    def _make(name, variants=(), published=True):
        return flower_service.create_flower({
            "name": name,
            "published": published,
            "variants": [
                {"length": length, "stock": stock, "price": price}
                for length, stock, price in variants
            ],
        })
    return _make


@pytest.fixture(scope='function')
def rose(make_flower):
    """Red rose: 60cm x100 @ 75.0 and 70cm x50 @ 90.0."""
    return make_flower("Троянда червона", [(60, 100, 75.0), (70, 50, 90.0)])


@pytest.fixture(scope='function')
def customer(db_session):
    return customer_service.create_customer({"name": "Квіткова лавка", "type": "Wholesale"})


def sale_payload(customer, operation_id="op-1", items=None, **extra):
    """Sale request body for the red rose fixture."""
    payload = {
        "operationId": operation_id,
        "customerId": customer.document_id,
        "items": items or [
            {"flowerSlug": "troyanda-chervona", "length": 60, "qty": 10, "price": 75.0, "name": "Троянда червона"},
        ],
    }
    payload.update(extra)
    return payload
