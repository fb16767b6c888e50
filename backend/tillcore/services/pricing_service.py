"""
Pricing calculator.

Pure functions: no database access. Callers resolve catalog prices and the
store's tax policy first, then hand plain values in.

Invariants (authoritative):
- subtotal = SUM(unit_price * quantity)
- tax = enabled ? (percentage ? subtotal * value / 100 : value) : 0
- discount = redeem_points ? redemption_discount : 0
- grand_total = max(subtotal + tax - discount, 0)
- Accumulation keeps full Decimal precision; rounding happens only in
  PriceBreakdown.to_dict() (presentation) and when a sale is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..money import ZERO, money_str, quantize_money
from ..models.tenancy import TAX_KIND_FIXED, TAX_KIND_PERCENTAGE, VALID_TAX_KINDS
from ..validation import ValidationError


@dataclass(frozen=True)
class TaxPolicy:
    enabled: bool = False
    kind: str = TAX_KIND_PERCENTAGE
    value: Decimal = ZERO

    def __post_init__(self):
        if self.kind not in VALID_TAX_KINDS:
            raise ValidationError(f"tax kind must be one of {sorted(VALID_TAX_KINDS)}")
        if self.value < 0:
            raise ValidationError("tax value must be >= 0")

    @classmethod
    def from_store(cls, store) -> "TaxPolicy":
        return cls(
            enabled=bool(store.tax_enabled),
            kind=store.tax_kind or TAX_KIND_PERCENTAGE,
            value=Decimal(store.tax_value or 0),
        )

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "type": self.kind, "value": str(self.value)}


@dataclass(frozen=True)
class CartLine:
    """
    A priced cart line.

    unit_price may differ from catalog_price when the cashier overrode it.
    catalog_price and cost_price are carried only for margin warnings.
    """
    product_id: int
    quantity: int
    unit_price: Decimal
    catalog_price: Decimal | None = None
    cost_price: Decimal | None = None
    name: str | None = None

    def __post_init__(self):
        if self.quantity < 1:
            raise ValidationError("quantity must be >= 1")
        if self.unit_price < 0:
            raise ValidationError("unit_price must be >= 0")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def is_price_override(self) -> bool:
        return self.catalog_price is not None and self.unit_price != self.catalog_price


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    grand_total: Decimal
    line_count: int
    margin_warnings: list[dict] = field(default_factory=list)

    @property
    def checkout_enabled(self) -> bool:
        return self.line_count > 0

    def to_dict(self) -> dict:
        return {
            "subtotal": money_str(self.subtotal),
            "tax": money_str(self.tax),
            "discount": money_str(self.discount),
            "grand_total": money_str(self.grand_total),
            "line_count": self.line_count,
            "checkout_enabled": self.checkout_enabled,
            "margin_warnings": self.margin_warnings,
        }


def compute_tax(subtotal: Decimal, policy: TaxPolicy) -> Decimal:
    if not policy.enabled:
        return ZERO
    if policy.kind == TAX_KIND_PERCENTAGE:
        return subtotal * policy.value / Decimal(100)
    if policy.kind == TAX_KIND_FIXED:
        return policy.value
    return ZERO


def margin_warnings(lines: list[CartLine]) -> list[dict]:
    """Lines whose selling price is below cost."""
    warnings = []
    for line in lines:
        if line.cost_price is None or line.unit_price >= line.cost_price:
            continue
        warnings.append({
            "product_id": line.product_id,
            "name": line.name,
            "unit_price": money_str(line.unit_price),
            "cost_price": money_str(line.cost_price),
            "price_override": line.is_price_override,
        })
    return warnings


def calculate_totals(
    lines: list[CartLine],
    tax_policy: TaxPolicy,
    *,
    redeem_points: bool = False,
    redemption_discount: Decimal = ZERO,
) -> PriceBreakdown:
    subtotal = sum((line.line_total for line in lines), ZERO)
    tax = compute_tax(subtotal, tax_policy)
    discount = redemption_discount if redeem_points else ZERO

    grand_total = subtotal + tax - discount
    if grand_total < 0:
        grand_total = ZERO

    return PriceBreakdown(
        subtotal=subtotal,
        tax=tax,
        discount=discount,
        grand_total=grand_total,
        line_count=len(lines),
        margin_warnings=margin_warnings(lines),
    )


def charged_amounts(breakdown: PriceBreakdown) -> dict[str, Decimal]:
    """The breakdown rounded to what is actually charged and persisted."""
    return {
        "subtotal": quantize_money(breakdown.subtotal),
        "tax_amount": quantize_money(breakdown.tax),
        "discount_amount": quantize_money(breakdown.discount),
        "total_amount": quantize_money(breakdown.grand_total),
    }
