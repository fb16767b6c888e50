from __future__ import annotations

from ..extensions import db
from tillcore.time_utils import to_utc_z


NOTIFICATION_ORDER = "order"
NOTIFICATION_LOW_STOCK = "low_stock"

DEFAULT_WELCOME_TEMPLATE = "Welcome {Name}! You have been registered. Shop with us to earn points."
DEFAULT_RECEIPT_TEMPLATE = "Thanks for buying! Total: {Currency} {Amount}. Receipt {Receipt}. Points earned: {PointsEarned}, balance: {TotalPoints}."
DEFAULT_OWNER_SALE_TEMPLATE = "New Sale Alert: {Currency} {Amount} by {Name}. Total Today: {TotalOrders} orders."


class Notification(db.Model):
    """
    In-app notification shown on the store dashboard.

    Created as a side effect of settlement ("order") and of stock crossing the
    low-stock threshold ("low_stock"). metadata carries ids for deep links.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_store_read", "store_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    # "metadata" is reserved on declarative models
    extra = db.Column("metadata", db.JSON, nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "metadata": self.extra or {},
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }


class MessagingSettings(db.Model):
    """
    Per-store preferences for customer/owner messages sent after a sale.

    Templates accept {Name}, {Amount}, {Currency}, {Id}, {Receipt},
    {PointsEarned}, {TotalPoints}, {staff-name} and {TotalOrders}.
    """
    __tablename__ = "messaging_settings"
    __table_args__ = (
        db.UniqueConstraint("store_id", name="uq_messaging_settings_store"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    notify_customer_sms = db.Column(db.Boolean, nullable=False, default=True)
    notify_customer_whatsapp = db.Column(db.Boolean, nullable=False, default=False)
    notify_owner_sms = db.Column(db.Boolean, nullable=False, default=True)
    notify_owner_whatsapp = db.Column(db.Boolean, nullable=False, default=False)

    welcome_template = db.Column(db.Text, nullable=False, default=DEFAULT_WELCOME_TEMPLATE)
    receipt_template = db.Column(db.Text, nullable=False, default=DEFAULT_RECEIPT_TEMPLATE)
    owner_sale_template = db.Column(db.Text, nullable=False, default=DEFAULT_OWNER_SALE_TEMPLATE)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("messaging_settings", uselist=False, lazy=True))

    def customer_channels(self) -> list[str]:
        channels = []
        if self.notify_customer_sms:
            channels.append("sms")
        if self.notify_customer_whatsapp:
            channels.append("whatsapp")
        return channels

    def owner_channels(self) -> list[str]:
        channels = []
        if self.notify_owner_sms:
            channels.append("sms")
        if self.notify_owner_whatsapp:
            channels.append("whatsapp")
        return channels

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "notify_customer_sms": self.notify_customer_sms,
            "notify_customer_whatsapp": self.notify_customer_whatsapp,
            "notify_owner_sms": self.notify_owner_sms,
            "notify_owner_whatsapp": self.notify_owner_whatsapp,
            "welcome_template": self.welcome_template,
            "receipt_template": self.receipt_template,
            "owner_sale_template": self.owner_sale_template,
            "updated_at": to_utc_z(self.updated_at),
        }
