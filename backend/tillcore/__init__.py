# backend/tillcore/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.concurrency import configure_sqlite_transactions
    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            configure_sqlite_transactions(db.engine)

    # Outbound collaborators; tests swap these for recording/mock versions
    from .decorators import StaticTokenAuthProvider
    from .services.notification_service import build_sender_from_config
    from .services.payment_gateway import PaymentGateway
    app.extensions["tillcore.auth_provider"] = StaticTokenAuthProvider(app.config.get("API_TOKENS"))
    app.extensions["tillcore.notification_sender"] = build_sender_from_config(app.config)
    app.extensions["tillcore.payment_gateway"] = PaymentGateway.from_config(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.loyalty import loyalty_bp
    from .routes.stores import stores_bp
    from .routes.payments import payments_bp
    from .routes.notifications import notifications_bp
    from .routes.customers import customers_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(customers_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ORIGINS", []))
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
