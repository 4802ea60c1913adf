# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services.auth_service import PasswordValidationError
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by NIK and password; returns a bearer token.

    Unknown NIK and wrong password give the same 401 response.
    """
    try:
        data = request.get_json(silent=True) or {}
        nik = data.get("nik")
        password = data.get("password")

        if not all([nik, password]):
            return jsonify({"error": "nik and password required"}), 400

        user = auth_service.authenticate(str(nik), str(password))
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token)
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.post("/password")
@require_auth
def change_password_route():
    """Change own password: current_password, new_password, confirm_password."""
    data = request.get_json(silent=True) or {}
    try:
        auth_service.change_password(
            g.current_user.id,
            data.get("current_password"),
            data.get("new_password"),
            data.get("confirm_password"),
        )
        return jsonify({"message": "Password updated"}), 200
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to change password")
        return jsonify({"error": "Internal server error"}), 500
