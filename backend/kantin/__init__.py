# backend/kantin/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Kiosk checkout sessions live in-process, one registry per app
    from .services.camera import UnavailableCamera
    from .services.kiosk_registry import KioskSessionRegistry
    from .services.verification_gateway import build_gateway

    app.extensions["kiosk_sessions"] = KioskSessionRegistry(
        gateway=build_gateway(app.config),
        camera_factory=UnavailableCamera,
        result_display_delay=app.config["RESULT_DISPLAY_DELAY_SECONDS"],
        ttl_seconds=app.config["KIOSK_SESSION_TTL_SECONDS"],
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.catalog import catalog_bp
    from .routes.kiosk import kiosk_bp
    from .routes.seller import seller_bp
    from .routes.admin import admin_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(kiosk_bp)
    app.register_blueprint(seller_bp)
    app.register_blueprint(admin_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS", []))

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
