# backend/kantin/services/catalog_service.py
"""
Catalog Service

Products and categories. Sellers own their products; the kiosk only ever
reads purchasable products (active and in stock) and decrements stock when
a purchase is verified.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Product, Category
from ..models.catalog import DEFAULT_CATEGORY
from .concurrency import lock_for_update

PRODUCT_MUTABLE_FIELDS = {"name", "description", "price", "stock", "category", "image_url", "is_active"}

DEFAULT_CATEGORIES = [
    ("Makanan", "UtensilsCrossed"),
    ("Snack", "Cookie"),
    ("Minuman", "Coffee"),
]


class CatalogError(Exception):
    """Raised for catalog operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(CatalogError):
    pass


class ProductOwnershipError(CatalogError):
    """A seller tried to change another seller's product."""


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)
    if not p.category:
        p.category = DEFAULT_CATEGORY


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product


def list_active(category: str | None = None, search: str | None = None) -> list[Product]:
    """
    Purchasable products for the kiosk: active AND stock > 0.

    category "all" (or None) disables the category filter; search matches
    name or description case-insensitively.
    """
    query = db.session.query(Product).filter(Product.is_active.is_(True), Product.stock > 0)

    if category and category != "all":
        query = query.filter(Product.category == category)

    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                db.func.lower(Product.name).like(pattern),
                db.func.lower(db.func.coalesce(Product.description, "")).like(pattern),
            )
        )

    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def list_by_seller(seller_id: int) -> list[Product]:
    return (
        db.session.query(Product)
        .filter_by(seller_id=seller_id)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )


def create_product(*, seller_id: int, patch: dict) -> Product:
    product = Product(seller_id=seller_id, is_active=True)
    apply_product_patch(product, patch)
    db.session.add(product)
    db.session.commit()
    return product


def _owned_product(product_id: int, seller_id: int | None) -> Product:
    product = get_product(product_id)
    if seller_id is not None and product.seller_id != seller_id:
        raise ProductOwnershipError("Product belongs to another seller")
    return product


def update_product(product_id: int, patch: dict, seller_id: int | None = None) -> Product:
    """Update a product. When seller_id is given, the product must belong to that seller."""
    product = _owned_product(product_id, seller_id)
    apply_product_patch(product, patch)
    db.session.commit()
    return product


def toggle_active(product_id: int, seller_id: int | None = None) -> Product:
    product = _owned_product(product_id, seller_id)
    product.is_active = not product.is_active
    db.session.commit()
    return product


def delete_product(product_id: int, seller_id: int | None = None) -> None:
    product = _owned_product(product_id, seller_id)
    db.session.delete(product)
    db.session.commit()


def decrement_stock(product_id: int, quantity: int) -> Product:
    """
    Reduce stock by quantity, clamped at zero.

    Does not commit: callers run this inside atomic() together with the
    transaction it belongs to.
    """
    if quantity < 0:
        raise CatalogError("Quantity must not be negative")

    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")

    product.stock = max(0, product.stock - quantity)
    db.session.flush()
    return product


# =============================================================================
# CATEGORIES
# =============================================================================

def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.id.asc()).all()


def create_category(name: str, icon: str | None = None) -> Category:
    name = (name or "").strip()
    if not name:
        raise CatalogError("Category name is required")
    if db.session.query(Category).filter_by(name=name).first():
        raise CatalogError(f"Category '{name}' already exists")

    category = Category(name=name, icon=icon)
    db.session.add(category)
    db.session.commit()
    return category


def delete_category(category_id: int) -> None:
    category = db.session.get(Category, category_id)
    if category is None:
        raise CatalogError(f"Category {category_id} not found")
    db.session.delete(category)
    db.session.commit()


def ensure_default_categories() -> int:
    """Seed the default categories. Safe to call repeatedly; returns how many were created."""
    created = 0
    for name, icon in DEFAULT_CATEGORIES:
        if db.session.query(Category).filter_by(name=name).first():
            continue
        db.session.add(Category(name=name, icon=icon))
        created += 1
    db.session.commit()
    return created
