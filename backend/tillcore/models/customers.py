from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from tillcore.time_utils import to_utc_z


LEDGER_EARNED = "earned"
LEDGER_REDEEMED = "redeemed"
VALID_LEDGER_TYPES = {LEDGER_EARNED, LEDGER_REDEEMED}


class Customer(db.Model):
    """
    Customer master data for tracking purchases and loyalty.

    MULTI-TENANT: Customers are scoped to a store. Phone is soft-unique per
    store: lookups go by (store_id, phone) and the unique constraint backs it.

    `points` is a cached balance. The loyalty ledger (loyalty_logs) is the
    source of truth; the cache is only changed by atomic deltas written in the
    same transaction as a ledger entry (see loyalty_service).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("store_id", "phone", name="uq_customers_store_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    phone = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False, default="Unknown")

    points = db.Column(db.Integer, nullable=False, default=0)

    # Denormalized aggregates (updated when sales are settled)
    total_spent = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_visits = db.Column(db.Integer, nullable=False, default=0)
    last_visit = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("customers", lazy=True))

    def __repr__(self) -> str:
        return f"<Customer id={self.id} phone={self.phone!r} points={self.points}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "phone": self.phone,
            "name": self.name,
            "points": self.points,
            "total_spent": money_str(self.total_spent),
            "total_visits": self.total_visits,
            "last_visit": to_utc_z(self.last_visit),
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyLedgerEntry(db.Model):
    """
    Append-only ledger of loyalty point changes.

    TYPES:
    - earned: points credited by a sale (positive)
    - redeemed: points debited in-sale or by manual redemption (negative)

    IMMUTABLE: Records are never updated or deleted. A customer's balance is
    SUM(points) over their entries.
    """
    __tablename__ = "loyalty_logs"
    __table_args__ = (
        db.Index("ix_loyalty_logs_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    points = db.Column(db.Integer, nullable=False)  # signed delta
    type = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)

    # Plain integer, not a FK: entries outlive a deleted sale
    sale_id = db.Column(db.Integer, nullable=True, index=True)
    employee_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "points": self.points,
            "type": self.type,
            "description": self.description,
            "sale_id": self.sale_id,
            "employee_id": self.employee_id,
            "created_at": to_utc_z(self.created_at),
        }
