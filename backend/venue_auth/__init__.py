# backend/venue_auth/__init__.py
from flask import Flask, jsonify, request

from .config import Config
from .errors import VenueAuthError
from .extensions import db, migrate


def _engine_options(config) -> dict:
    options = dict(config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    # SQLite uses a pool without a checkout timeout
    if not config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        options.setdefault("pool_timeout", config["DB_POOL_TIMEOUT_SECONDS"])
    return options


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(VenueAuthError)
    def handle_venue_auth_error(error: VenueAuthError):
        if error.http_status >= 500:
            app.logger.exception("Request %s %s failed: %s", request.method, request.path, error.message)
        response = jsonify(error.to_dict())
        response.status_code = error.http_status
        retry_after = getattr(error, "retry_after_seconds", None)
        if retry_after:
            response.headers["Retry-After"] = str(retry_after)
        return response


def create_app(test_config: dict | None = None, clock=None, cache=None) -> Flask:
    """
    Application factory.

    test_config overrides Config values; clock and cache are injected into
    the service registry (tests pass a frozen clock).
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app.config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.registry import init_services
    init_services(app, clock=clock, cache=cache)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.sub_users import sub_users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(sub_users_bp)

    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
