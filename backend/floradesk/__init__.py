# backend/floradesk/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate



def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.flowers import flowers_bp, variants_bp
    from .routes.customers import customers_bp
    from .routes.pos import pos_bp
    from .routes.shifts import shifts_bp
    from .routes.analytics import analytics_bp
    from .routes.currency import currency_bp
    from .routes.planned_supply import planned_supply_bp
    from .routes.imports import imports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(flowers_bp)
    app.register_blueprint(variants_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(pos_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(currency_bp)
    app.register_blueprint(planned_supply_bp)
    app.register_blueprint(imports_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ALLOWED_ORIGINS", []):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Operator override of the exchange rate survives restarts via the environment
    manual_rate = app.config.get("USD_MANUAL_RATE")
    if manual_rate:
        from .services.currency_service import set_manual_usd_rate
        with app.app_context():
            set_manual_usd_rate(manual_rate)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
