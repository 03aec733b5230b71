"""
Health endpoint and bootstrap command tests.
"""

from floradesk.extensions import db
from floradesk.models import AdminUser, User


def test_health(client, db_session):
    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json["status"] == "ok"
    assert resp.json["checks"]["database"]["status"] == "healthy"
    assert resp.json["timestamp"].endswith("Z")


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init"])
    second = runner.invoke(args=["system", "init"])

    assert "Created admin: admin@floradesk.local" in first.output
    assert "already exists, skipping" in second.output
    assert db.session.query(AdminUser).count() == 1
    assert db.session.query(User).filter_by(email="seller@floradesk.local").one().confirmed


def test_init_users_can_log_in(app, client, db_session):
    app.test_cli_runner().invoke(args=["system", "init"])

    seller = client.post("/api/auth/login", json={"email": "seller@floradesk.local", "password": "Password123!"})
    admin = client.post("/api/auth/login", json={"email": "admin@floradesk.local", "password": "Password123!"})

    assert seller.status_code == 200
    assert admin.status_code == 200


def test_close_stale_command(app, db_session):
    result = app.test_cli_runner().invoke(args=["shifts", "close-stale"])
    assert "Closed 0 stale shift(s)" in result.output
