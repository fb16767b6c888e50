"""
Payment gateway client (Paystack-style REST API).

Only the request/response contract is implemented: initialize a hosted
checkout for non-cash tenders and verify its outcome by reference. Neither
call raises for gateway-side problems; the caller gets a result object with
`error` set and decides whether to settle.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

import httpx
from flask import current_app

from ..money import to_minor_units
from ..validation import ValidationError, require_money


@dataclass
class PaymentInitResult:
    reference: str
    checkout_url: str | None = None
    access_code: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.checkout_url)

    def to_dict(self) -> dict:
        return {
            "success": self.ok,
            "reference": self.reference,
            "checkout_url": self.checkout_url,
            "access_code": self.access_code,
            "error": self.error,
        }


@dataclass
class PaymentVerifyResult:
    reference: str
    status: str | None = None
    error: str | None = None

    @property
    def paid(self) -> bool:
        return self.error is None and self.status == "success"


def new_reference() -> str:
    return f"TC-{uuid.uuid4().hex[:20]}"


class PaymentGateway:
    def __init__(
        self,
        base_url: str,
        secret_key: str,
        *,
        currency: str = "GHS",
        callback_url: str | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.secret_key = secret_key
        self.currency = currency
        self.callback_url = callback_url or None
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config, *, transport: httpx.BaseTransport | None = None) -> "PaymentGateway":
        return cls(
            config.get("PAYMENT_GATEWAY_URL", ""),
            config.get("PAYMENT_GATEWAY_SECRET", ""),
            currency=config.get("CURRENCY", "GHS"),
            callback_url=config.get("PAYMENT_CALLBACK_URL"),
            timeout=config.get("PAYMENT_GATEWAY_TIMEOUT", 15.0),
            transport=transport,
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    def initialize_payment(
        self,
        amount: Decimal,
        customer_ref: str,
        description: str | None = None,
        *,
        reference: str | None = None,
        channels: list[str] | None = None,
        metadata: dict | None = None,
    ) -> PaymentInitResult:
        """
        Start a hosted checkout for `amount` (major units; sent in minor units).

        customer_ref is the payer's email as the gateway requires one.
        """
        amount = require_money(amount, "amount", allow_zero=False)
        if not customer_ref or not str(customer_ref).strip():
            raise ValidationError("customer_ref is required")

        reference = reference or new_reference()
        if not self.base_url or not self.secret_key:
            return PaymentInitResult(reference=reference, error="Payment gateway is not configured")

        payload = {
            "email": str(customer_ref).strip(),
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "reference": reference,
            "channels": channels or ["mobile_money"],
            "metadata": {**(metadata or {}), "description": description or ""},
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        try:
            with self._client() as client:
                response = client.post("/transaction/initialize", json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            current_app.logger.warning("Payment initialize failed for %s: %s", reference, exc)
            return PaymentInitResult(reference=reference, error="Payment gateway unreachable")

        if response.is_error or not data.get("status"):
            message = data.get("message") or "Failed to initialize payment"
            current_app.logger.warning("Payment initialize rejected for %s: %s", reference, message)
            return PaymentInitResult(reference=reference, error=message)

        body = data.get("data") or {}
        return PaymentInitResult(
            reference=body.get("reference") or reference,
            checkout_url=body.get("authorization_url"),
            access_code=body.get("access_code"),
        )

    def verify_payment(self, reference: str) -> PaymentVerifyResult:
        if not reference:
            raise ValidationError("reference is required")
        if not self.base_url or not self.secret_key:
            return PaymentVerifyResult(reference=reference, error="Payment gateway is not configured")

        try:
            with self._client() as client:
                response = client.get(f"/transaction/verify/{reference}")
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            current_app.logger.warning("Payment verify failed for %s: %s", reference, exc)
            return PaymentVerifyResult(reference=reference, error="Payment gateway unreachable")

        if response.is_error or not data.get("status"):
            return PaymentVerifyResult(reference=reference, error=data.get("message") or "Failed to verify payment")

        return PaymentVerifyResult(reference=reference, status=(data.get("data") or {}).get("status"))


def get_gateway() -> PaymentGateway:
    return current_app.extensions["tillcore.payment_gateway"]


def initialize_payment(amount: Decimal, customer_ref: str, description: str | None = None, **kwargs) -> PaymentInitResult:
    return get_gateway().initialize_payment(amount, customer_ref, description, **kwargs)
