# Overview: Flask API routes for health checks.

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text

from ..extensions import db
from ..services import payment_config_service


system_bp = Blueprint("system", __name__, url_prefix="/api")


@system_bp.get("/health")
def health():
    """Liveness plus a database round-trip."""
    try:
        db.session.execute(text("SELECT 1"))
    except Exception:
        current_app.logger.exception("Database health check failed")
        return jsonify({"status": "error", "database": "unavailable"}), 503

    registry = current_app.extensions["kiosk_sessions"]
    return jsonify({
        "status": "ok",
        "database": "ok",
        "verification_gateway": registry.gateway.name,
        "qris_configured": payment_config_service.get_config() is not None,
        "active_kiosk_sessions": len(registry),
    }), 200
