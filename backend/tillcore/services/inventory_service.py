# Overview: Service-layer operations for inventory; encapsulates stock adjustment and low-stock signals.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..models.communications import NOTIFICATION_LOW_STOCK
from .notification_service import create_notification
"""
Inventory Invariants (authoritative)

- Product.stock is only changed by a single atomic statement:
    UPDATE products SET stock = stock - :qty WHERE id = :id [AND stock >= :qty] RETURNING stock
  never by reading stock into Python and writing back a computed value, so two
  concurrent sales can never lose an adjustment.
- With ALLOW_NEGATIVE_STOCK (default) stock may go below zero; the sale stands.
- Without it, the guarded UPDATE matches no row when stock < qty and the
  caller must reject the sale (InsufficientStockError).
- A low_stock notification is emitted when 0 < new_stock <= LOW_STOCK_THRESHOLD.
"""


class InventoryError(Exception):
    """Raised when a stock adjustment cannot be applied."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(InventoryError):
    """Decrement would drive stock negative while negative stock is disallowed."""


@dataclass
class StockAdjustment:
    product_id: int
    quantity: int
    new_stock: int
    low_stock: bool


def decrement_stock(
    store_id: int,
    product_id: int,
    quantity: int,
    *,
    allow_negative: bool | None = None,
) -> int:
    """
    Atomically subtract quantity from a product's stock and return the new level.

    Does not commit.
    """
    if quantity < 1:
        raise InventoryError("quantity must be >= 1", details={"product_id": product_id})

    if allow_negative is None:
        allow_negative = current_app.config.get("ALLOW_NEGATIVE_STOCK", True)

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.store_id == store_id)
        .values(stock=Product.stock - quantity)
        .returning(Product.stock)
    )
    if not allow_negative:
        stmt = stmt.where(Product.stock >= quantity)

    new_stock = db.session.execute(stmt).scalar_one_or_none()
    if new_stock is not None:
        return new_stock

    product = db.session.query(Product).filter_by(id=product_id, store_id=store_id).first()
    if product is None:
        raise InventoryError("Product not found", details={"product_id": product_id})

    raise InsufficientStockError(
        "Insufficient stock",
        details={"product_id": product_id, "requested_quantity": quantity, "on_hand": product.stock},
    )


def is_low_stock(new_stock: int, threshold: int | None = None) -> bool:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    return 0 < new_stock <= threshold


def emit_low_stock_notification(store_id: int, product: Product, new_stock: int):
    return create_notification(
        store_id=store_id,
        type=NOTIFICATION_LOW_STOCK,
        title=f"Low stock: {product.name}",
        message=f"{product.name} ({product.sku}) is down to {new_stock} unit(s).",
        metadata={"product_id": product.id, "sku": product.sku, "stock": new_stock},
    )


def adjust_for_sale(store_id: int, product_id: int, quantity: int, *, allow_negative: bool | None = None) -> StockAdjustment:
    """
    Decrement stock for one sold line and raise the low-stock signal if crossed.

    Does not commit.
    """
    new_stock = decrement_stock(store_id, product_id, quantity, allow_negative=allow_negative)

    low = is_low_stock(new_stock)
    if low:
        product = db.session.get(Product, product_id)
        emit_low_stock_notification(store_id, product, new_stock)

    return StockAdjustment(product_id=product_id, quantity=quantity, new_stock=new_stock, low_stock=low)


def list_low_stock(store_id: int, threshold: int | None = None) -> list[Product]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    return (
        db.session.query(Product)
        .filter(Product.store_id == store_id, Product.is_active.is_(True), Product.stock <= threshold)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
