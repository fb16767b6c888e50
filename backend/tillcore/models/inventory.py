from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from tillcore.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with an on-hand stock figure.

    MULTI-TENANT: Products are scoped to stores via store_id; SKUs are unique
    within a store.

    STOCK: `stock` is intended to stay >= 0 but is not constrained; a sale may
    drive it negative when ALLOW_NEGATIVE_STOCK is on. It is only mutated by
    inventory_service with an atomic UPDATE (never read-modify-write).

    cost_price is retained so price-overridden cart lines can be compared
    against it for margin warnings.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_name", "store_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    cost_price = db.Column(db.Numeric(12, 2), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price": money_str(self.price),
            "cost_price": money_str(self.cost_price),
            "stock": self.stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
