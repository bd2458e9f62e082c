# backend/buildops/__init__.py
import logging

from flask import Flask, request
from flask.logging import default_handler

from .config import Config
from .extensions import db, migrate


def _configure_logging(app: Flask) -> None:
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    app.logger.setLevel(level)
    # Service and gateway modules log under "buildops.*"
    package_logger = logging.getLogger(__name__)
    package_logger.setLevel(level)
    if default_handler not in package_logger.handlers:
        package_logger.addHandler(default_handler)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .integrations import init_gateways
    init_gateways(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.payment_applications import payment_applications_bp
    from .routes.dashboard import dashboard_bp
    from .routes.change_orders import change_orders_bp
    from .routes.daily_logs import daily_logs_bp
    from .routes.reports import reports_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(payment_applications_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(change_orders_bp)
    app.register_blueprint(daily_logs_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(webhooks_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-User-Id, X-User-Role"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
