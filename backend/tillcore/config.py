# backend/tillcore/config.py
from __future__ import annotations
import json
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_json(name: str, default):
    raw = os.environ.get(name)
    if not raw:
        return default
    return json.loads(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tillcore.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    CURRENCY = os.environ.get("CURRENCY", "GHS")
    DEFAULT_RECEIPT_PREFIX = os.environ.get("DEFAULT_RECEIPT_PREFIX", "TRX")

    # Inventory
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
    # When False an oversell rejects the whole settlement instead of driving stock negative
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", True)

    # Attempts for a write transaction that hits "database is locked" or a stale row
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    # When True a failed line-item/stock/loyalty step aborts the settlement
    SETTLEMENT_STRICT = _env_bool("SETTLEMENT_STRICT", False)

    # In-sale redemption quantum: fixed points debited for a fixed discount
    LOYALTY_REDEMPTION_POINTS = int(os.environ.get("LOYALTY_REDEMPTION_POINTS", "100"))
    LOYALTY_REDEMPTION_DISCOUNT = os.environ.get("LOYALTY_REDEMPTION_DISCOUNT", "5.00")

    # Payment gateway collaborator (Paystack-style API)
    PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL", "https://api.paystack.co")
    PAYMENT_GATEWAY_SECRET = os.environ.get("PAYMENT_GATEWAY_SECRET", "")
    PAYMENT_CALLBACK_URL = os.environ.get("PAYMENT_CALLBACK_URL", "")
    PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "15"))

    # Notification collaborator (SMS / WhatsApp relay); empty URL = log only
    NOTIFICATION_GATEWAY_URL = os.environ.get("NOTIFICATION_GATEWAY_URL", "")
    NOTIFICATION_API_KEY = os.environ.get("NOTIFICATION_API_KEY", "")
    NOTIFICATION_TIMEOUT = float(os.environ.get("NOTIFICATION_TIMEOUT", "10"))

    # Static bearer tokens for the default auth provider:
    # {"<token>": {"employee_id": "...", "store_id": 1, "permissions": [...], "is_owner": false}}
    API_TOKENS = _env_json("API_TOKENS", {})

    # Browser origins allowed to call the API (till front-ends)
    CORS_ORIGINS = _env_json("CORS_ORIGINS", [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ])
