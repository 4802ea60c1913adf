# Overview: Flask API routes for the seller dashboard; parses input and returns JSON responses.

"""
Seller routes

Every route acts on the authenticated seller's own products, sales and
withdrawals. The seller id always comes from the session, never the body.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..models import Product
from ..models.auth import ROLE_SELLER
from ..services import catalog_service, ledger_service, balance_service
from ..services.catalog_service import CatalogError, ProductNotFoundError, ProductOwnershipError
from ..services.balance_service import WithdrawalError, MIN_WITHDRAWAL, FEE_RATE
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    coerce_int,
    ValidationError,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "price", "stock", "category", "image_url", "is_active"},
    required_on_create={"name", "price", "stock"},
)

seller_bp = Blueprint("seller", __name__, url_prefix="/api/seller")


def _catalog_error_response(e: CatalogError):
    if isinstance(e, ProductNotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ProductOwnershipError):
        return jsonify({"error": str(e)}), 403
    return jsonify({"error": str(e), "details": e.details}), 400


# =============================================================================
# PRODUCTS
# =============================================================================

@seller_bp.get("/products")
@require_auth
@require_role(ROLE_SELLER)
def list_products_route():
    products = catalog_service.list_by_seller(g.current_user.id)
    return jsonify({"items": [p.to_dict() for p in products]}), 200


@seller_bp.post("/products")
@require_auth
@require_role(ROLE_SELLER)
def create_product_route():
    """
    Create a product owned by the caller.

    Required: name, price, stock. Category defaults to "Lainnya".
    """
    try:
        patch = validate_payload(
            model=Product,
            payload=request.get_json(silent=True),
            policy=PRODUCT_POLICY,
            partial=False,
        )
        enforce_rules_product(patch)
        product = catalog_service.create_product(seller_id=g.current_user.id, patch=patch)
        current_app.logger.info("Seller %s created product %s", g.current_user.id, product.id)
        return jsonify({"product": product.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CatalogError as e:
        return _catalog_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@seller_bp.put("/products/<int:product_id>")
@require_auth
@require_role(ROLE_SELLER)
def update_product_route(product_id: int):
    try:
        patch = validate_payload(
            model=Product,
            payload=request.get_json(silent=True),
            policy=PRODUCT_POLICY,
            partial=True,
        )
        enforce_rules_product(patch)
        product = catalog_service.update_product(product_id, patch, seller_id=g.current_user.id)
        return jsonify({"product": product.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CatalogError as e:
        return _catalog_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@seller_bp.post("/products/<int:product_id>/toggle")
@require_auth
@require_role(ROLE_SELLER)
def toggle_product_route(product_id: int):
    try:
        product = catalog_service.toggle_active(product_id, seller_id=g.current_user.id)
        return jsonify({"product": product.to_dict()}), 200
    except CatalogError as e:
        return _catalog_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to toggle product")
        return jsonify({"error": "Internal server error"}), 500


@seller_bp.delete("/products/<int:product_id>")
@require_auth
@require_role(ROLE_SELLER)
def delete_product_route(product_id: int):
    try:
        catalog_service.delete_product(product_id, seller_id=g.current_user.id)
        return jsonify({"message": "Product deleted"}), 200
    except CatalogError as e:
        return _catalog_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SALES & BALANCE
# =============================================================================

@seller_bp.get("/transactions")
@require_auth
@require_role(ROLE_SELLER)
def list_transactions_route():
    transactions = ledger_service.list_transactions(seller_id=g.current_user.id)
    return jsonify({"items": [t.to_dict() for t in transactions]}), 200


@seller_bp.get("/balance")
@require_auth
@require_role(ROLE_SELLER)
def balance_route():
    balance = balance_service.get_seller_balance(g.current_user.id)
    return jsonify({
        "balance": balance.to_dict(),
        "min_withdrawal": MIN_WITHDRAWAL,
        "fee_rate": str(FEE_RATE),
    }), 200


@seller_bp.get("/stats")
@require_auth
@require_role(ROLE_SELLER)
def stats_route():
    return jsonify({"stats": balance_service.get_seller_stats(g.current_user.id)}), 200


# =============================================================================
# WITHDRAWALS
# =============================================================================

@seller_bp.get("/withdrawals")
@require_auth
@require_role(ROLE_SELLER)
def list_withdrawals_route():
    withdrawals = ledger_service.list_withdrawals(seller_id=g.current_user.id)
    return jsonify({"items": [w.to_dict() for w in withdrawals]}), 200


@seller_bp.post("/withdrawals")
@require_auth
@require_role(ROLE_SELLER)
def request_withdrawal_route():
    """
    Request a payout.

    Body: amount, bank_name, account_number, account_name.
    Rejected (nothing written) below the minimum or above the available balance.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") is None:
            return jsonify({"error": "amount required"}), 400
        amount = coerce_int(data.get("amount"), "amount")

        withdrawal = balance_service.request_withdrawal(
            g.current_user.id,
            amount,
            bank_name=data.get("bank_name"),
            account_number=data.get("account_number"),
            account_name=data.get("account_name"),
        )
        return jsonify({"withdrawal": withdrawal.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except WithdrawalError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to request withdrawal")
        return jsonify({"error": "Internal server error"}), 500
