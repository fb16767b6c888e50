from __future__ import annotations

from ..extensions import db
from ..money import money_str
from tillcore.time_utils import to_utc_z


SALE_STATUS_COMPLETED = "completed"


class Sale(db.Model):
    """
    Settled sale record.

    Created exactly once per settlement that reaches the write step and
    immutable afterwards. The only permitted change is deletion by the store
    owner, which cascades to the line items.

    transaction_id is the human-readable receipt number (e.g. "TRX-00042").
    idempotency_key is supplied by the checkout caller per attempt; a retried
    checkout with the same key is answered with the existing sale.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("store_id", "transaction_id", name="uq_sales_store_trx"),
        db.UniqueConstraint("store_id", "idempotency_key", name="uq_sales_store_idempotency"),
        db.Index("ix_sales_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    transaction_id = db.Column(db.String(64), nullable=False)
    idempotency_key = db.Column(db.String(128), nullable=True)

    # Totals as charged
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_reference = db.Column(db.String(128), nullable=True)

    # Supplied by the auth collaborator; not a FK
    employee_id = db.Column(db.String(64), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED)

    points_earned = db.Column(db.Integer, nullable=False, default=0)
    points_redeemed = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer")
    items = db.relationship(
        "SaleLineItem",
        backref="sale",
        lazy=True,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "transaction_id": self.transaction_id,
            "idempotency_key": self.idempotency_key,
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "discount_amount": money_str(self.discount_amount),
            "total_amount": money_str(self.total_amount),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "employee_id": self.employee_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleLineItem(db.Model):
    """One row per cart line of a settled sale."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_sale = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price_at_sale": money_str(self.price_at_sale),
            "subtotal": money_str(self.subtotal),
        }
