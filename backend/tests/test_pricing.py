from decimal import Decimal

import pytest

from tillcore.money import money_str, quantize_money, to_minor_units
from tillcore.services.pricing_service import (
    CartLine,
    TaxPolicy,
    calculate_totals,
    charged_amounts,
    compute_tax,
)
from tillcore.validation import ValidationError


def _line(price, qty=1, product_id=1, **kwargs):
    return CartLine(product_id=product_id, quantity=qty, unit_price=Decimal(price), **kwargs)


NO_TAX = TaxPolicy()
VAT_8 = TaxPolicy(enabled=True, kind="percentage", value=Decimal("8"))
FIXED_5 = TaxPolicy(enabled=True, kind="fixed", value=Decimal("5"))


class TestTotals:
    def test_percentage_tax(self):
        totals = calculate_totals([_line("100.00")], VAT_8)
        assert totals.subtotal == Decimal("100.00")
        assert totals.tax == Decimal("8.00")
        assert totals.grand_total == Decimal("108.00")

    def test_fixed_tax(self):
        totals = calculate_totals([_line("25.00", qty=2)], FIXED_5)
        assert totals.subtotal == Decimal("50.00")
        assert totals.tax == Decimal("5")
        assert totals.grand_total == Decimal("55.00")

    def test_disabled_tax_ignores_value(self):
        policy = TaxPolicy(enabled=False, kind="percentage", value=Decimal("15"))
        assert compute_tax(Decimal("100"), policy) == Decimal("0")

    def test_redemption_discount(self):
        totals = calculate_totals([_line("20.00")], NO_TAX, redeem_points=True, redemption_discount=Decimal("5.00"))
        assert totals.discount == Decimal("5.00")
        assert totals.grand_total == Decimal("15.00")

    def test_discount_not_applied_without_redeem_flag(self):
        totals = calculate_totals([_line("20.00")], NO_TAX, redeem_points=False, redemption_discount=Decimal("5.00"))
        assert totals.discount == Decimal("0")
        assert totals.grand_total == Decimal("20.00")

    def test_grand_total_clamped_at_zero(self):
        totals = calculate_totals([_line("3.00")], NO_TAX, redeem_points=True, redemption_discount=Decimal("5.00"))
        assert totals.grand_total == Decimal("0")

    def test_grand_total_identity(self):
        lines = [_line("1.99", qty=3), _line("0.35", qty=7, product_id=2)]
        totals = calculate_totals(lines, VAT_8, redeem_points=True, redemption_discount=Decimal("5.00"))
        assert totals.grand_total == totals.subtotal + totals.tax - totals.discount

    def test_empty_cart_disables_checkout(self):
        totals = calculate_totals([], VAT_8)
        assert totals.subtotal == Decimal("0")
        assert totals.checkout_enabled is False

    def test_full_precision_until_presented(self):
        # 3 x 0.335 = 1.005 -> tax 8% = 0.0804
        totals = calculate_totals([_line("0.335", qty=3)], VAT_8)
        assert totals.subtotal == Decimal("1.005")
        assert totals.to_dict()["subtotal"] == "1.01"
        assert charged_amounts(totals)["total_amount"] == Decimal("1.09")


class TestValidation:
    def test_quantity_below_one_rejected(self):
        with pytest.raises(ValidationError):
            _line("1.00", qty=0)

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            _line("-1.00")

    def test_unknown_tax_kind_rejected(self):
        with pytest.raises(ValidationError):
            TaxPolicy(enabled=True, kind="compound", value=Decimal("1"))


class TestMarginWarnings:
    def test_override_below_cost_is_reported(self):
        line = _line("4.00", catalog_price=Decimal("6.00"), cost_price=Decimal("5.00"), name="Milk")
        totals = calculate_totals([line], NO_TAX)
        assert totals.margin_warnings == [{
            "product_id": 1,
            "name": "Milk",
            "unit_price": "4.00",
            "cost_price": "5.00",
            "price_override": True,
        }]

    def test_price_above_cost_is_quiet(self):
        line = _line("6.00", catalog_price=Decimal("6.00"), cost_price=Decimal("5.00"))
        assert calculate_totals([line], NO_TAX).margin_warnings == []


class TestMoney:
    def test_half_up_rounding(self):
        assert quantize_money(Decimal("2.345")) == Decimal("2.35")
        assert money_str(Decimal("2.344")) == "2.34"

    def test_minor_units(self):
        assert to_minor_units(Decimal("55.00")) == 5500
        assert to_minor_units(Decimal("0.125")) == 13
