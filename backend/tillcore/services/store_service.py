from __future__ import annotations

from decimal import Decimal

from tillcore.extensions import db
from tillcore.models import LoyaltyProgramConfig, MessagingSettings, Store
from tillcore.models.tenancy import TAX_KIND_PERCENTAGE, VALID_TAX_KINDS
from tillcore.services.concurrency import lock_for_update, run_with_retry
from tillcore.services.notification_service import get_messaging_settings
from tillcore.validation import ConflictError, ValidationError, optional_str, parse_bool, require_int, require_money


class StoreError(Exception):
    """Raised when store operations fail."""
    pass


MESSAGING_FLAGS = (
    "notify_customer_sms",
    "notify_customer_whatsapp",
    "notify_owner_sms",
    "notify_owner_whatsapp",
)
MESSAGING_TEMPLATES = ("welcome_template", "receipt_template", "owner_sale_template")


def create_store(
    name: str,
    code: str | None = None,
    *,
    owner_phone: str | None = None,
    receipt_prefix: str | None = None,
) -> Store:
    def _op():
        if not name or not name.strip():
            raise StoreError("Store name is required")

        if code and db.session.query(Store).filter_by(code=code).first():
            raise ConflictError(f"Store code {code!r} already exists")

        store = Store(
            name=name.strip(),
            code=code,
            owner_phone=owner_phone,
            receipt_prefix=receipt_prefix,
            last_transaction_number=0,
            tax_enabled=False,
            tax_kind=TAX_KIND_PERCENTAGE,
            tax_value=Decimal("0"),
        )
        db.session.add(store)
        db.session.flush()
        db.session.add(LoyaltyProgramConfig(store_id=store.id))
        db.session.commit()
        return store

    return run_with_retry(_op)


def get_store(store_id: int) -> Store | None:
    return db.session.query(Store).filter_by(id=store_id).first()


def get_loyalty_config(store_id: int) -> LoyaltyProgramConfig | None:
    return db.session.query(LoyaltyProgramConfig).filter_by(store_id=store_id).first()


def get_store_settings(store_id: int) -> dict:
    """Tax, receipt numbering, loyalty program and messaging settings in one payload."""
    store = get_store(store_id)
    if not store:
        raise StoreError("Store not found")

    loyalty = get_loyalty_config(store_id)
    return {
        "store": store.to_dict(),
        "loyalty": loyalty.to_dict() if loyalty else LoyaltyProgramConfig(
            store_id=store_id,
            enabled=True,
            earn_rate=Decimal("1"),
            redemption_rate=Decimal("0.05"),
            min_redemption_points=100,
        ).to_dict(),
        "messaging": get_messaging_settings(store_id).to_dict(),
    }


def _apply_tax(store: Store, data: dict) -> None:
    if "enabled" in data:
        store.tax_enabled = parse_bool(data["enabled"], "tax_settings.enabled")
    if "type" in data:
        kind = data["type"]
        if kind not in VALID_TAX_KINDS:
            raise ValidationError(f"tax_settings.type must be one of {sorted(VALID_TAX_KINDS)}")
        store.tax_kind = kind
    if "value" in data:
        store.tax_value = require_money(data["value"], "tax_settings.value")


def _apply_loyalty(store_id: int, data: dict) -> None:
    config = lock_for_update(db.session.query(LoyaltyProgramConfig).filter_by(store_id=store_id)).first()
    if not config:
        config = LoyaltyProgramConfig(store_id=store_id)
        db.session.add(config)

    if "enabled" in data:
        config.enabled = parse_bool(data["enabled"], "loyalty.enabled")
    if "earn_rate" in data:
        config.earn_rate = require_money(data["earn_rate"], "loyalty.earn_rate")
    if "redemption_rate" in data:
        config.redemption_rate = require_money(data["redemption_rate"], "loyalty.redemption_rate")
    if "min_redemption_points" in data:
        config.min_redemption_points = require_int(data["min_redemption_points"], "loyalty.min_redemption_points", minimum=0)


def _apply_messaging(store_id: int, data: dict) -> None:
    settings = lock_for_update(db.session.query(MessagingSettings).filter_by(store_id=store_id)).first()
    if not settings:
        settings = get_messaging_settings(store_id)
        db.session.add(settings)

    for flag in MESSAGING_FLAGS:
        if flag in data:
            setattr(settings, flag, parse_bool(data[flag], f"messaging.{flag}"))
    for key in MESSAGING_TEMPLATES:
        if key in data:
            template = optional_str(data[key], f"messaging.{key}", max_length=1000)
            if not template:
                raise ValidationError(f"messaging.{key} cannot be empty")
            setattr(settings, key, template)


def update_store_settings(store_id: int, data: dict) -> dict:
    """
    Partial update of store settings.

    Accepts any of: name, owner_phone, receipt_prefix, receipt_suffix,
    tax_settings {enabled, type, value}, loyalty {...}, messaging {...}.
    All sections are applied in one transaction.
    """
    if not isinstance(data, dict):
        raise ValidationError("settings payload must be an object")

    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise StoreError("Store not found")

        if "name" in data:
            name = optional_str(data["name"], "name", max_length=120)
            if not name:
                raise ValidationError("name cannot be empty")
            store.name = name
        if "owner_phone" in data:
            store.owner_phone = optional_str(data["owner_phone"], "owner_phone", max_length=32)
        if "receipt_prefix" in data:
            store.receipt_prefix = optional_str(data["receipt_prefix"], "receipt_prefix", max_length=16)
        if "receipt_suffix" in data:
            store.receipt_suffix = optional_str(data["receipt_suffix"], "receipt_suffix", max_length=16)

        for section, apply in (("tax_settings", None), ("loyalty", _apply_loyalty), ("messaging", _apply_messaging)):
            if section not in data:
                continue
            if not isinstance(data[section], dict):
                raise ValidationError(f"{section} must be an object")
            if apply is None:
                _apply_tax(store, data[section])
            else:
                apply(store_id, data[section])

        db.session.commit()
        return get_store_settings(store_id)

    try:
        return run_with_retry(_op)
    except (StoreError, ValidationError):
        db.session.rollback()
        raise
