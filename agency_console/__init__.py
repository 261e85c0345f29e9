"""
Application factory for the Agency Console.

This module provides a function to create and configure the Flask
application. All extensions (SQLAlchemy, Migrate, JWT) are initialised
here, together with the console's own collaborators: the remote data
gateway, asset storage and the notifier. Individual blueprints for the
different parts of the API are registered inside the factory to allow
for modular development and unit testing.

Environment variables control the database connection, secrets, the
gateway's retry policy and the notification endpoint. A default
configuration is provided for development, using SQLite when no
database URL is available.
"""

from __future__ import annotations

import atexit
import logging
import os
from datetime import timedelta

from flask import Flask, send_from_directory
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager

# instantiate extensions without binding them to an app yet.  They will
# be bound in create_app().  This pattern avoids issues with circular
# imports and makes testing easier.
from .db import db  # use shared db object from db.py
migrate = Migrate()
jwt = JWTManager()

EXTENSION_KEY = "agency_console"


def create_app(test_config: dict | None = None) -> Flask:
    """Create and configure a Flask application.

    Parameters
    ----------
    test_config: dict | None, optional
        Optional configuration overrides used when running tests.

    Returns
    -------
    Flask
        A configured Flask application instance.
    """
    app = Flask(__name__)

    # Default configuration. Override using environment variables or
    # by passing a ``test_config`` mapping.
    app.config.update(
        SQLALCHEMY_DATABASE_URI=os.environ.get("DATABASE_URL", "sqlite:///agency_console.db"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        JWT_SECRET_KEY=os.environ.get("JWT_SECRET_KEY", "please-change-this-secret-key"),
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(days=1),
        GATEWAY_MAX_ATTEMPTS=int(os.environ.get("GATEWAY_MAX_ATTEMPTS", 3)),
        GATEWAY_BACKOFF_SECONDS=float(os.environ.get("GATEWAY_BACKOFF_SECONDS", 1.0)),
        GATEWAY_BACKOFF_JITTER_SECONDS=float(os.environ.get("GATEWAY_BACKOFF_JITTER_SECONDS", 1.0)),
        GATEWAY_CIRCUIT_THRESHOLD=int(os.environ.get("GATEWAY_CIRCUIT_THRESHOLD", 3)),
        GATEWAY_CIRCUIT_COOLDOWN_SECONDS=float(os.environ.get("GATEWAY_CIRCUIT_COOLDOWN_SECONDS", 30)),
        CONSOLE_LOAD_TIMEOUT_SECONDS=float(os.environ.get("CONSOLE_LOAD_TIMEOUT_SECONDS", 30)),
        NOTIFICATION_URL=os.environ.get("NOTIFICATION_URL"),
        NOTIFICATION_TOKEN=os.environ.get("NOTIFICATION_TOKEN"),
        ADMIN_NOTIFICATION_EMAIL=os.environ.get("ADMIN_NOTIFICATION_EMAIL"),
        UPLOAD_FOLDER=os.environ.get("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads")),
        UPLOAD_URL_PREFIX=os.environ.get("UPLOAD_URL_PREFIX", "/uploads"),
        # 10MB brochures plus multipart overhead
        MAX_CONTENT_LENGTH=11 * 1024 * 1024,
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO"),
    )

    if test_config:
        app.config.update(test_config)

    logging.getLogger(__name__).setLevel(app.config["LOG_LEVEL"])

    # Initialise extensions with the app
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)

    # Console collaborators, shared by every request of this app
    from .gateway import RemoteDataGateway, SqlAlchemyBackend
    from .services import ConsoleServices
    from .services.notifications import Notifier
    from .services.storage import AssetStorage

    notifier = Notifier.from_config(app.config)
    atexit.register(notifier.shutdown)
    app.extensions[EXTENSION_KEY] = ConsoleServices(
        gateway=RemoteDataGateway.from_config(SqlAlchemyBackend(), app.config),
        notifier=notifier,
        storage=AssetStorage.from_config(app.config),
        admin_email=app.config["ADMIN_NOTIFICATION_EMAIL"],
        load_timeout=app.config["CONSOLE_LOAD_TIMEOUT_SECONDS"],
    )

    # Register custom error handlers
    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints. Importing here avoids circular imports.
    from .routes.auth import auth_bp
    from .routes.agencies import agencies_bp
    from .routes.agency_services import services_bp
    from .routes.photos import photos_bp
    from .routes.reviews import reviews_bp

    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(agencies_bp, url_prefix="/api")
    app.register_blueprint(services_bp, url_prefix="/api")
    app.register_blueprint(photos_bp, url_prefix="/api")
    app.register_blueprint(reviews_bp, url_prefix="/api")

    from .commands import register_commands
    register_commands(app)

    @app.route(f"{app.config['UPLOAD_URL_PREFIX'].rstrip('/')}/<bucket>/<name>")
    def uploaded_asset(bucket: str, name: str):
        """Serve a stored photo or brochure."""
        storage = app.extensions[EXTENSION_KEY].storage
        path = storage.path_for(bucket, name)
        return send_from_directory(path.parent, path.name)

    # Provide a simple health check route
    @app.route("/api/health")
    def health_check() -> dict[str, str]:
        """Return a simple health check response.

        This endpoint can be used by deployment platforms to verify
        that the application has started correctly.
        """
        return {"status": "ok"}

    return app
