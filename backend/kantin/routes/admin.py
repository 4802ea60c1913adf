# Overview: Flask API routes for administrator operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..models.auth import ROLE_ADMIN, ROLE_SELLER
from ..models.ledger import WITHDRAWAL_STATUSES
from ..services import (
    auth_service,
    audit_service,
    balance_service,
    catalog_service,
    ledger_service,
    payment_config_service,
    reporting_service,
    session_service,
)
from ..services.auth_service import AccountError, PasswordValidationError
from ..services.balance_service import WithdrawalError
from ..services.catalog_service import CatalogError
from ..services.payment_config_service import PaymentConfigError
from ..decorators import require_auth, require_role


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


def _seller_dict(user) -> dict:
    data = user.to_dict()
    data["balance"] = balance_service.get_seller_balance(user.id).to_dict()
    return data


# =============================================================================
# SELLERS
# =============================================================================

@admin_bp.get("/sellers")
@require_auth
@require_role(ROLE_ADMIN)
def list_sellers_route():
    sellers = auth_service.list_sellers(search=request.args.get("q"))
    return jsonify({"items": [_seller_dict(u) for u in sellers]}), 200


@admin_bp.post("/sellers")
@require_auth
@require_role(ROLE_ADMIN)
def create_seller_route():
    """
    Create a seller account.

    Body: full_name, nik, email?, department?, phone?, password?
    Without a password the configured default seller password is used.
    """
    try:
        data = request.get_json(silent=True) or {}
        password = data.get("password") or current_app.config["DEFAULT_SELLER_PASSWORD"]

        user = auth_service.create_user(
            full_name=data.get("full_name"),
            nik=data.get("nik"),
            password=password,
            role=ROLE_SELLER,
            email=data.get("email"),
            department=data.get("department"),
            phone=data.get("phone"),
        )
        current_app.logger.info("Admin %s created seller %s", g.current_user.id, user.id)
        return jsonify({"seller": _seller_dict(user)}), 201

    except (AccountError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create seller")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/sellers/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_seller_route(user_id: int):
    try:
        data = request.get_json(silent=True) or {}
        password = data.pop("password", None)
        user = auth_service.update_seller(user_id, data)
        if password:
            auth_service.set_password(user.id, password)
            session_service.revoke_user_sessions(user.id)
        return jsonify({"seller": _seller_dict(user)}), 200

    except (AccountError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update seller")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/sellers/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_seller_route(user_id: int):
    try:
        auth_service.delete_seller(user_id)
        return jsonify({"message": "Seller removed"}), 200
    except AccountError as e:
        return jsonify({"error": str(e)}), 404


# =============================================================================
# TRANSACTIONS & AUDIT
# =============================================================================

@admin_bp.get("/transactions")
@require_auth
@require_role(ROLE_ADMIN)
def list_transactions_route():
    """Query params: today=true limits to transactions since midnight UTC."""
    if _truthy(request.args.get("today")):
        transactions = ledger_service.list_today_transactions()
    else:
        transactions = ledger_service.list_transactions()
    return jsonify({"items": [t.to_dict(include_proof=True) for t in transactions]}), 200


@admin_bp.get("/transactions/<int:transaction_id>")
@require_auth
@require_role(ROLE_ADMIN)
def get_transaction_route(transaction_id: int):
    transaction = ledger_service.get_transaction(transaction_id)
    if transaction is None:
        return jsonify({"error": f"Transaction {transaction_id} not found"}), 404
    return jsonify({"transaction": transaction.to_dict(include_proof=True)}), 200


@admin_bp.get("/failed-validations")
@require_auth
@require_role(ROLE_ADMIN)
def list_failed_validations_route():
    records = audit_service.list_failed_validations(today_only=_truthy(request.args.get("today")))
    return jsonify({"items": [r.to_dict(include_image=True) for r in records]}), 200


@admin_bp.get("/stats")
@require_auth
@require_role(ROLE_ADMIN)
def stats_route():
    return jsonify({"stats": reporting_service.admin_dashboard_stats()}), 200


# =============================================================================
# WITHDRAWALS
# =============================================================================

@admin_bp.get("/withdrawals")
@require_auth
@require_role(ROLE_ADMIN)
def list_withdrawals_route():
    status = request.args.get("status")
    if status and status not in WITHDRAWAL_STATUSES:
        return jsonify({"error": f"Invalid status: {status}"}), 400
    withdrawals = ledger_service.list_withdrawals(status=status or None)
    return jsonify({"items": [w.to_dict() for w in withdrawals]}), 200


@admin_bp.post("/withdrawals/<int:withdrawal_id>/approve")
@require_auth
@require_role(ROLE_ADMIN)
def approve_withdrawal_route(withdrawal_id: int):
    """Body: transfer_proof_url (required), admin_notes."""
    try:
        data = request.get_json(silent=True) or {}
        withdrawal = balance_service.approve_withdrawal(
            withdrawal_id,
            transfer_proof_url=data.get("transfer_proof_url"),
            processed_by_user_id=g.current_user.id,
            admin_notes=data.get("admin_notes"),
        )
        return jsonify({"withdrawal": withdrawal.to_dict()}), 200

    except WithdrawalError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to approve withdrawal")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/withdrawals/<int:withdrawal_id>/reject")
@require_auth
@require_role(ROLE_ADMIN)
def reject_withdrawal_route(withdrawal_id: int):
    try:
        data = request.get_json(silent=True) or {}
        withdrawal = balance_service.reject_withdrawal(
            withdrawal_id,
            processed_by_user_id=g.current_user.id,
            admin_notes=data.get("admin_notes"),
        )
        return jsonify({"withdrawal": withdrawal.to_dict()}), 200

    except WithdrawalError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to reject withdrawal")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QRIS & CATEGORIES
# =============================================================================

@admin_bp.get("/qris")
@require_auth
@require_role(ROLE_ADMIN)
def get_qris_route():
    config = payment_config_service.get_config()
    return jsonify({"qris": config.to_dict() if config else None}), 200


@admin_bp.put("/qris")
@require_auth
@require_role(ROLE_ADMIN)
def update_qris_route():
    """
    Body: image_url and/or merchant_name.

    Kiosk sessions already showing a QRIS keep the one they froze.
    """
    try:
        data = request.get_json(silent=True) or {}
        patch = {k: data[k] for k in ("image_url", "merchant_name") if k in data}
        config = payment_config_service.update_config(patch, updated_by_user_id=g.current_user.id)
        current_app.logger.info("QRIS config updated by admin %s", g.current_user.id)
        return jsonify({"qris": config.to_dict()}), 200

    except PaymentConfigError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update QRIS config")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/categories")
@require_auth
@require_role(ROLE_ADMIN)
def create_category_route():
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.create_category(data.get("name"), icon=data.get("icon"))
        return jsonify({"category": category.to_dict()}), 201
    except CatalogError as e:
        return jsonify({"error": str(e)}), 400


@admin_bp.delete("/categories/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_category_route(category_id: int):
    try:
        catalog_service.delete_category(category_id)
        return jsonify({"message": "Category deleted"}), 200
    except CatalogError as e:
        return jsonify({"error": str(e)}), 404
