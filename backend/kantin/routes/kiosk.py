# Overview: Flask API routes driving kiosk checkout sessions; parses input and returns JSON responses.

"""
Kiosk API routes

The kiosk is unauthenticated. Each kiosk holds one session id and calls
these routes as the customer moves through the checkout screens.
"""

from flask import Blueprint, request, jsonify, current_app

from ..formatting import format_rupiah
from ..services import catalog_service
from ..services.camera import KioskCamera, CameraUnavailableError
from ..services.catalog_service import ProductNotFoundError
from ..services.checkout_engine import (
    STATE_CAPTURING,
    STATE_IDLE,
    CheckoutError,
    CheckoutPersistenceError,
    InvalidTransitionError,
    VerificationInFlightError,
)
from ..services.kiosk_registry import KioskSessionNotFoundError
from ..validation import ValidationError, coerce_int


kiosk_bp = Blueprint("kiosk", __name__, url_prefix="/api/kiosk")


def _registry():
    return current_app.extensions["kiosk_sessions"]


def _session_payload(session) -> dict:
    data = session.to_dict()
    data["total_display"] = format_rupiah(data["total_amount"])
    return data


def _checkout_error_response(session, e: CheckoutError):
    status = 400
    if isinstance(e, (VerificationInFlightError, InvalidTransitionError)):
        status = 409
    elif isinstance(e, CheckoutPersistenceError):
        status = 500
    return jsonify({
        "error": str(e),
        "details": e.details,
        "session": _session_payload(session),
    }), status


def _not_found(e: KioskSessionNotFoundError):
    return jsonify({"error": str(e)}), 404


@kiosk_bp.post("/sessions")
def create_session_route():
    session = _registry().create()
    current_app.logger.info("Kiosk session %s created", session.session_id)
    return jsonify({"session": _session_payload(session)}), 201


@kiosk_bp.get("/sessions/<session_id>")
def get_session_route(session_id: str):
    try:
        session = _registry().get(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)
    return jsonify({"session": _session_payload(session)}), 200


@kiosk_bp.delete("/sessions/<session_id>")
def close_session_route(session_id: str):
    try:
        _registry().discard(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)
    return jsonify({"message": "Session closed"}), 200


# =============================================================================
# CART
# =============================================================================

@kiosk_bp.post("/sessions/<session_id>/cart")
def add_to_cart_route(session_id: str):
    """
    Add one unit of a product.

    Body: {"product_id": int}
    A full line is not an error: the response carries stock_exceeded=true.
    """
    try:
        session = _registry().get(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)

    try:
        data = request.get_json(silent=True) or {}
        if data.get("product_id") is None:
            return jsonify({"error": "product_id required"}), 400
        product_id = coerce_int(data.get("product_id"), "product_id")

        product = catalog_service.get_product(product_id)
        update = session.add_item(product)
        return jsonify({
            "update": update.to_dict(),
            "session": _session_payload(session),
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ProductNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except CheckoutError as e:
        return _checkout_error_response(session, e)
    except Exception:
        current_app.logger.exception("Failed to add product to kiosk cart")
        return jsonify({"error": "Internal server error"}), 500


@kiosk_bp.patch("/sessions/<session_id>/cart/<int:product_id>")
def update_cart_line_route(session_id: str, product_id: int):
    """
    Body: {"quantity": int} to set, or {"delta": int} to adjust.

    The quantity is clamped to the product's current stock.
    """
    try:
        session = _registry().get(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)

    try:
        data = request.get_json(silent=True) or {}
        if "quantity" not in data and "delta" not in data:
            return jsonify({"error": "quantity or delta required"}), 400

        try:
            stock = catalog_service.get_product(product_id).stock
        except ProductNotFoundError:
            stock = 0

        if "quantity" in data:
            quantity = coerce_int(data.get("quantity"), "quantity")
            if quantity < 0:
                return jsonify({"error": "quantity must be >= 0"}), 400
            update = session.set_quantity(product_id, quantity, stock=stock)
        else:
            delta = coerce_int(data.get("delta"), "delta")
            update = session.adjust_quantity(product_id, delta, stock=stock)

        return jsonify({
            "update": update.to_dict(),
            "session": _session_payload(session),
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CheckoutError as e:
        return _checkout_error_response(session, e)
    except Exception:
        current_app.logger.exception("Failed to update kiosk cart line")
        return jsonify({"error": "Internal server error"}), 500


@kiosk_bp.delete("/sessions/<session_id>/cart/<int:product_id>")
def remove_cart_line_route(session_id: str, product_id: int):
    try:
        session = _registry().get(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)

    try:
        update = session.remove_item(product_id)
        return jsonify({
            "update": update.to_dict(),
            "session": _session_payload(session),
        }), 200
    except CheckoutError as e:
        return _checkout_error_response(session, e)
    except Exception:
        current_app.logger.exception("Failed to remove kiosk cart line")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# FLOW
# =============================================================================

def _transition(session_id: str, action):
    try:
        session = _registry().get(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)

    try:
        action(session)
        return jsonify({"session": _session_payload(session)}), 200
    except CheckoutError as e:
        return _checkout_error_response(session, e)
    except Exception:
        current_app.logger.exception("Kiosk session %s transition failed", session_id)
        return jsonify({"error": "Internal server error"}), 500


@kiosk_bp.post("/sessions/<session_id>/checkout")
def checkout_route(session_id: str):
    """Idle -> Cart."""
    return _transition(session_id, lambda s: s.begin_checkout())


@kiosk_bp.post("/sessions/<session_id>/details")
def details_route(session_id: str):
    """Cart -> Details."""
    return _transition(session_id, lambda s: s.proceed_to_details())


@kiosk_bp.post("/sessions/<session_id>/details/back")
def back_to_cart_route(session_id: str):
    return _transition(session_id, lambda s: s.back_to_cart())


@kiosk_bp.post("/sessions/<session_id>/payment")
def payment_route(session_id: str):
    """
    Details -> Payment.

    Body: {"customer_name": str}
    Response session.payment_display holds the frozen QRIS image, merchant
    name and total.
    """
    data = request.get_json(silent=True) or {}
    return _transition(session_id, lambda s: s.submit_details(data.get("customer_name")))


@kiosk_bp.post("/sessions/<session_id>/camera")
def open_camera_route(session_id: str):
    """
    Payment -> Capturing.

    Body: {"available": bool}, whether the kiosk obtained its camera.
    When it did not, the session stays in Payment and camera_open=false
    tells the kiosk to show the upload control.
    """
    try:
        session = _registry().get(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)

    try:
        data = request.get_json(silent=True) or {}
        device = None
        if "available" in data:
            device = KioskCamera(available=bool(data.get("available")))

        opened = session.open_camera(device)
        return jsonify({
            "camera_open": opened,
            "fallback": None if opened else "upload",
            "session": _session_payload(session),
        }), 200

    except CheckoutError as e:
        return _checkout_error_response(session, e)
    except Exception:
        current_app.logger.exception("Failed to open camera for kiosk session %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


@kiosk_bp.post("/sessions/<session_id>/camera/cancel")
def close_camera_route(session_id: str):
    """Capturing -> Payment."""
    return _transition(session_id, lambda s: s.close_camera())


@kiosk_bp.post("/sessions/<session_id>/proof")
def submit_proof_route(session_id: str):
    """
    Submit a payment proof and wait for the verdict.

    Body: {"image": "<base64 or data URL>"}
    In Capturing the image is the camera frame; in Payment it is an upload.
    Returns 409 while another proof for this session is being verified.
    """
    try:
        session = _registry().get(session_id)
    except KioskSessionNotFoundError as e:
        return _not_found(e)

    data = request.get_json(silent=True) or {}
    image = data.get("image")
    if not image or not isinstance(image, str):
        return jsonify({"error": "image required"}), 400

    try:
        if session.state == STATE_CAPTURING:
            outcome = session.capture_and_verify(frame=image)
        else:
            outcome = session.upload_proof(image)

        return jsonify({
            "outcome": outcome.to_dict(),
            "session": _session_payload(session),
        }), 200

    except CameraUnavailableError as e:
        return jsonify({
            "error": str(e),
            "fallback": "upload",
            "session": _session_payload(session),
        }), 400
    except CheckoutError as e:
        return _checkout_error_response(session, e)
    except Exception:
        current_app.logger.exception("Failed to verify proof for kiosk session %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


@kiosk_bp.post("/sessions/<session_id>/retry")
def retry_route(session_id: str):
    """Failure -> Payment."""
    return _transition(session_id, lambda s: s.retry())


@kiosk_bp.post("/sessions/<session_id>/cancel")
def cancel_route(session_id: str):
    """Any state -> Idle with an empty cart. Writes nothing."""
    return _transition(session_id, lambda s: s.cancel())


@kiosk_bp.post("/sessions/<session_id>/finish")
def finish_route(session_id: str):
    """
    Success -> Idle.

    A session already returned to Idle by the display delay is left as is.
    """
    def _finish(session):
        if session.state != STATE_IDLE:
            session.finish()

    return _transition(session_id, _finish)
