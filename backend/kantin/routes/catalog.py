# Overview: Public catalog routes read by the kiosk.

from flask import Blueprint, request, jsonify

from ..services import catalog_service, payment_config_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.get("/products")
def list_products():
    """
    Purchasable products (active and in stock).

    Query params:
    - category: category name, or "all"
    - q: case-insensitive search over name and description
    """
    products = catalog_service.list_active(
        category=request.args.get("category"),
        search=request.args.get("q"),
    )
    categories = sorted({p.category for p in products})
    return jsonify({
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "categories": categories,
    }), 200


@catalog_bp.get("/categories")
def list_categories():
    return jsonify({"items": [c.to_dict() for c in catalog_service.list_categories()]}), 200


@catalog_bp.get("/qris")
def current_qris():
    config = payment_config_service.get_config()
    if config is None:
        return jsonify({"error": "QRIS payment is not configured"}), 404
    return jsonify({"qris": config.to_dict()}), 200
