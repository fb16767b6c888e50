# Overview: Turns a submitted cart payload into priced CartLines.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Product
from ..validation import MAX_QUANTITY, ValidationError, require_int, require_money
from .pricing_service import CartLine


def parse_cart_payload(raw_items) -> list[dict]:
    """
    Validate the shape of a cart payload.

    Each item: {"product_id": int, "quantity": int >= 1, "unit_price": optional money}.
    A present unit_price is a cashier price override.
    """
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    parsed = []
    for index, item in enumerate(raw_items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = require_int(item.get("product_id"), f"items[{index}].product_id", minimum=1)
        quantity = require_int(item.get("quantity"), f"items[{index}].quantity", minimum=1)
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"items[{index}].quantity exceeds maximum of {MAX_QUANTITY}")
        unit_price = None
        if item.get("unit_price") is not None:
            unit_price = require_money(item.get("unit_price"), f"items[{index}].unit_price")
        parsed.append({"product_id": product_id, "quantity": quantity, "unit_price": unit_price})
    return parsed


def build_cart_lines(store_id: int, raw_items) -> list[CartLine]:
    """
    Resolve products (scoped to the store) and price each line.

    Unknown, inactive or foreign-store products are rejected. Lines keep the
    caller's order; repeated products stay separate lines.
    """
    items = parse_cart_payload(raw_items)
    if not items:
        return []

    product_ids = {item["product_id"] for item in items}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.store_id == store_id, Product.id.in_(product_ids)).all()
    }

    missing = sorted(pid for pid in product_ids if pid not in products or not products[pid].is_active)
    if missing:
        raise ValidationError(f"Unknown or inactive products: {missing}")

    lines = []
    for item in items:
        product = products[item["product_id"]]
        catalog_price = Decimal(product.price) if product.price is not None else None
        unit_price = item["unit_price"] if item["unit_price"] is not None else catalog_price
        if unit_price is None:
            raise ValidationError(f"Product {product.id} has no price")
        lines.append(CartLine(
            product_id=product.id,
            quantity=item["quantity"],
            unit_price=unit_price,
            catalog_price=catalog_price,
            cost_price=Decimal(product.cost_price) if product.cost_price is not None else None,
            name=product.name,
        ))
    return lines
