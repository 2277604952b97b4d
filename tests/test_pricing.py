"""Tests for cart pricing."""

from decimal import Decimal

from config.settings import PricingConfig
from modules.pricing.calculator import (
    AppliedCoupon, PricedLine, calculate_shipping, calculate_totals, totals_match,
)

CONFIG = PricingConfig(free_shipping_threshold=Decimal("999"), flat_shipping_fee=Decimal("99"))


def line(price, quantity=1, adjustment="0"):
    return PricedLine(
        product_id=1, quantity=quantity, unit_price=Decimal(price), variant_adjustment=Decimal(adjustment),
    )


class TestTotals:
    def test_below_threshold_pays_flat_shipping(self):
        totals = calculate_totals([line("799")], config=CONFIG)
        assert totals.subtotal == Decimal("799.00")
        assert totals.shipping_cost == Decimal("99.00")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.total == Decimal("898.00")

    def test_percentage_coupon(self):
        coupon = AppliedCoupon(code="SAVE10", discount_amount=Decimal("79.90"), min_purchase=Decimal("500"))
        totals = calculate_totals([line("799")], coupon, CONFIG)
        assert totals.discount_amount == Decimal("79.90")
        assert totals.total == Decimal("818.10")
        assert totals.coupon_code == "SAVE10"

    def test_empty_cart_ships_free(self):
        totals = calculate_totals([], config=CONFIG)
        assert totals.subtotal == Decimal("0.00")
        assert totals.shipping_cost == Decimal("0.00")
        assert totals.total == Decimal("0.00")
        assert totals.item_count == 0

    def test_threshold_is_inclusive(self):
        assert calculate_shipping(Decimal("999.00"), CONFIG) == Decimal("0.00")
        assert calculate_shipping(Decimal("998.99"), CONFIG) == Decimal("99.00")

    def test_variant_adjustment_and_quantity(self):
        totals = calculate_totals([line("499", quantity=2, adjustment="150")], config=CONFIG)
        assert totals.subtotal == Decimal("1298.00")
        assert totals.shipping_cost == Decimal("0.00")
        assert totals.item_count == 2

    def test_coupon_below_minimum_is_ignored(self):
        coupon = AppliedCoupon(code="SAVE10", discount_amount=Decimal("40"), min_purchase=Decimal("500"))
        totals = calculate_totals([line("400")], coupon, CONFIG)
        assert totals.discount_amount == Decimal("0.00")
        assert totals.coupon_code is None
        assert totals.total == Decimal("499.00")

    def test_total_never_negative(self):
        coupon = AppliedCoupon(code="BIG", discount_amount=Decimal("5000"))
        totals = calculate_totals([line("100")], coupon, CONFIG)
        assert totals.total == Decimal("0.00")


class TestTotalsMatch:
    def test_within_epsilon(self):
        assert totals_match("898.00", Decimal("898.00"))
        assert totals_match(Decimal("898.01"), Decimal("898.00"))

    def test_outside_epsilon(self):
        assert not totals_match("1.00", Decimal("898.00"))
        assert not totals_match(None, Decimal("898.00"))
