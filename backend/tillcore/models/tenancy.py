from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from tillcore.time_utils import to_utc_z


TAX_KIND_PERCENTAGE = "percentage"
TAX_KIND_FIXED = "fixed"
VALID_TAX_KINDS = {TAX_KIND_PERCENTAGE, TAX_KIND_FIXED}


class Store(db.Model):
    """
    Store: the tenant boundary.

    MULTI-TENANT: Every product, customer, sale, ledger entry and notification
    carries store_id. Queries must always be scoped by store.

    SEQUENCE: last_transaction_number is the store-scoped counter behind the
    human-readable transaction id ({receipt_prefix}-{n:05d}). It is only ever
    advanced with an atomic UPDATE ... RETURNING (see sequence_service).
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_stores_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    # Owner contact for sale alerts
    owner_phone = db.Column(db.String(32), nullable=True)

    # Receipt numbering
    receipt_prefix = db.Column(db.String(16), nullable=True)
    receipt_suffix = db.Column(db.String(16), nullable=True)
    last_transaction_number = db.Column(db.Integer, nullable=False, default=0)

    # Tax policy
    tax_enabled = db.Column(db.Boolean, nullable=False, default=False)
    tax_kind = db.Column(db.String(16), nullable=False, default=TAX_KIND_PERCENTAGE)
    tax_value = db.Column(db.Numeric(12, 4), nullable=False, default=Decimal("0"))

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "owner_phone": self.owner_phone,
            "receipt_prefix": self.receipt_prefix,
            "receipt_suffix": self.receipt_suffix,
            "last_transaction_number": self.last_transaction_number,
            "tax_settings": {
                "enabled": bool(self.tax_enabled),
                "type": self.tax_kind,
                "value": str(self.tax_value) if self.tax_value is not None else "0",
            },
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyProgramConfig(db.Model):
    """
    Loyalty program settings, one row per store.

    earn_rate: points per currency unit spent.
    redemption_rate: currency value of one point. Only informational for the
    manual redemption screen; the in-sale discount uses the fixed quantum from
    config (LOYALTY_REDEMPTION_POINTS / LOYALTY_REDEMPTION_DISCOUNT).
    """
    __tablename__ = "loyalty_program_configs"
    __table_args__ = (
        db.UniqueConstraint("store_id", name="uq_loyalty_configs_store"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    enabled = db.Column(db.Boolean, nullable=False, default=True)
    earn_rate = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("1"))
    redemption_rate = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("0.05"))
    min_redemption_points = db.Column(db.Integer, nullable=False, default=100)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("loyalty_config", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "enabled": bool(self.enabled),
            "earn_rate": str(self.earn_rate),
            "redemption_rate": str(self.redemption_rate),
            "min_redemption_points": self.min_redemption_points,
            "updated_at": to_utc_z(self.updated_at),
        }
