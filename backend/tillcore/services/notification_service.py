"""
Notifications: in-app records plus fire-and-forget customer/owner messages.

In-app Notification rows are written inside the caller's transaction.
Outbound messages (SMS / WhatsApp) go through a NotificationSender registered
on the app; dispatch never raises. Every failure is logged and reported back to
the caller as a string so settlement can surface it as a warning.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx
from flask import current_app

from ..extensions import db
from ..models import MessagingSettings, Notification, Store
from ..models.communications import (
    DEFAULT_OWNER_SALE_TEMPLATE,
    DEFAULT_RECEIPT_TEMPLATE,
    DEFAULT_WELCOME_TEMPLATE,
)
from ..money import money_str

KIND_WELCOME = "welcome"
KIND_SALE = "sale"
KIND_LOW_STOCK = "low_stock"
VALID_DISPATCH_KINDS = {KIND_WELCOME, KIND_SALE, KIND_LOW_STOCK}


class NotificationDispatchError(Exception):
    """Raised by senders when a message could not be handed off."""
    pass


class NotificationSender(Protocol):
    def send(self, recipient: str, message: str, channel: str) -> None: ...


class LogNotificationSender:
    """Sender used when no gateway is configured: messages only hit the log."""

    def send(self, recipient: str, message: str, channel: str) -> None:
        current_app.logger.info("Notification (%s) to %s: %s", channel, recipient, message)


class HttpNotificationSender:
    """
    Posts messages to an SMS/WhatsApp relay.

    Request body: {"recipient": ..., "message": ..., "channel": "sms"|"whatsapp"}.
    Any transport error or non-2xx response raises NotificationDispatchError.
    """

    def __init__(self, base_url: str, api_key: str = "", *, timeout: float = 10.0, transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def send(self, recipient: str, message: str, channel: str) -> None:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    f"{self.base_url}/send",
                    json={"recipient": recipient, "message": message, "channel": channel},
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationDispatchError(f"{channel} to {recipient} failed: {exc}") from exc


class RecordingNotificationSender:
    """Keeps sent messages in memory. Handy for local development and tests."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    def send(self, recipient: str, message: str, channel: str) -> None:
        if self.fail:
            raise NotificationDispatchError(f"{channel} to {recipient} failed")
        self.sent.append({"recipient": recipient, "message": message, "channel": channel})


def build_sender_from_config(config) -> NotificationSender:
    url = config.get("NOTIFICATION_GATEWAY_URL")
    if not url:
        return LogNotificationSender()
    return HttpNotificationSender(
        url,
        config.get("NOTIFICATION_API_KEY", ""),
        timeout=config.get("NOTIFICATION_TIMEOUT", 10.0),
    )


def get_sender() -> NotificationSender:
    return current_app.extensions["tillcore.notification_sender"]


# ---------------------------------------------------------------------------
# In-app notifications
# ---------------------------------------------------------------------------

def create_notification(*, store_id: int, type: str, title: str, message: str, metadata: dict | None = None) -> Notification:
    """Add an in-app notification to the current transaction. Does not commit."""
    notification = Notification(
        store_id=store_id,
        type=type,
        title=title,
        message=message,
        extra=metadata or {},
        is_read=False,
    )
    db.session.add(notification)
    db.session.flush()
    return notification


def list_notifications(store_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = db.session.query(Notification).filter_by(store_id=store_id)
    if unread_only:
        q = q.filter_by(is_read=False)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(store_id: int, notification_id: int) -> Notification | None:
    notification = db.session.query(Notification).filter_by(id=notification_id, store_id=store_id).first()
    if not notification:
        return None
    notification.is_read = True
    db.session.commit()
    return notification


# ---------------------------------------------------------------------------
# Outbound messages
# ---------------------------------------------------------------------------

@dataclass
class NotificationPayload:
    """Everything the message templates can reference."""
    store_id: int
    transaction_id: str | None = None
    amount: Decimal | None = None
    item_count: int = 0
    customer_name: str | None = None
    customer_phone: str | None = None
    points_earned: int = 0
    total_points: int = 0
    staff_name: str | None = None
    orders_today: int = 0
    product_name: str | None = None
    stock: int | None = None


LOW_STOCK_TEMPLATE = "Low stock alert: {Product} is down to {Stock} unit(s)."


def render_template(template: str, values: dict[str, str]) -> str:
    """Replace {Placeholder} tokens; unknown tokens are left as written."""
    message = template
    for key, value in values.items():
        message = message.replace("{" + key + "}", value)
    return message


def _template_values(payload: NotificationPayload) -> dict[str, str]:
    name = payload.customer_name or "Customer"
    receipt = payload.transaction_id or ""
    return {
        "Name": name,
        "name": name,
        "Amount": money_str(payload.amount) or "0.00",
        "Currency": current_app.config.get("CURRENCY", ""),
        "Id": receipt,
        "Receipt": receipt,
        "receipt": receipt,
        "PointsEarned": str(payload.points_earned or 0),
        "TotalPoints": str(payload.total_points or 0),
        "staff-name": payload.staff_name or "Staff",
        "TotalOrders": str(payload.orders_today or 0),
        "Product": payload.product_name or "",
        "Stock": str(payload.stock if payload.stock is not None else ""),
    }


def get_messaging_settings(store_id: int) -> MessagingSettings:
    """Stored settings, or transient defaults when the store has none saved."""
    settings = db.session.query(MessagingSettings).filter_by(store_id=store_id).first()
    if settings is None:
        settings = MessagingSettings(
            store_id=store_id,
            notify_customer_sms=True,
            notify_customer_whatsapp=False,
            notify_owner_sms=True,
            notify_owner_whatsapp=False,
            welcome_template=DEFAULT_WELCOME_TEMPLATE,
            receipt_template=DEFAULT_RECEIPT_TEMPLATE,
            owner_sale_template=DEFAULT_OWNER_SALE_TEMPLATE,
        )
    return settings


@dataclass
class OutboundMessage:
    kind: str
    recipient: str
    message: str
    channels: list[str]


def plan_notification(kind: str, payload: NotificationPayload) -> list[OutboundMessage]:
    """
    Resolve recipients, channels and rendered text for one notification.

    welcome -> customer; sale -> customer and store owner; low_stock -> owner.
    Channels follow the store's MessagingSettings. Reads only.
    """
    if kind not in VALID_DISPATCH_KINDS:
        current_app.logger.warning("Unknown notification kind %r skipped", kind)
        return []

    settings = get_messaging_settings(payload.store_id)
    values = _template_values(payload)
    messages: list[OutboundMessage] = []

    if payload.customer_phone and kind in (KIND_WELCOME, KIND_SALE):
        template = settings.welcome_template if kind == KIND_WELCOME else settings.receipt_template
        messages.append(OutboundMessage(
            kind, payload.customer_phone, render_template(template, values), settings.customer_channels(),
        ))

    if kind in (KIND_SALE, KIND_LOW_STOCK):
        store = db.session.get(Store, payload.store_id)
        if store is not None and store.owner_phone:
            template = settings.owner_sale_template if kind == KIND_SALE else LOW_STOCK_TEMPLATE
            messages.append(OutboundMessage(
                kind, store.owner_phone, render_template(template, values), settings.owner_channels(),
            ))
    return messages


def deliver_messages(messages: list[OutboundMessage]) -> list[str]:
    """Hand messages to the sender. No database access; returns failed deliveries."""
    sender = get_sender()
    failures: list[str] = []
    for outbound in messages:
        for channel in outbound.channels:
            try:
                sender.send(outbound.recipient, outbound.message, channel)
            except Exception as exc:
                current_app.logger.warning(
                    "Notification dispatch failed (%s/%s to %s): %s", outbound.kind, channel, outbound.recipient, exc,
                )
                failures.append(f"{outbound.kind}:{channel}:{outbound.recipient}")
    return failures


def end_read_transaction() -> None:
    """
    Close the session's read transaction before slow network calls.

    On SQLite every transaction begins IMMEDIATE, so an idle read transaction
    would hold the write lock for the length of an SMS round-trip.
    """
    db.session.rollback()


def send_notification(kind: str, payload: NotificationPayload) -> list[str]:
    """
    Dispatch a welcome, sale or low-stock message.

    Must be called after the caller's writes are committed: the read
    transaction is ended before any message leaves the process.

    Fire-and-forget: returns the list of failed deliveries, never raises and
    never retries.
    """
    try:
        messages = plan_notification(kind, payload)
    except Exception as exc:
        current_app.logger.exception("Notification dispatch aborted for %s", kind)
        return [f"{kind}:error:{exc}"]
    finally:
        end_read_transaction()
    return deliver_messages(messages)
