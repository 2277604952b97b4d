"""
Pricing Module - Calculator
=============================
Cart pricing: subtotal, shipping, coupon discount and total.

Pure functions only. The same code prices the cart for display and
re-prices it on the server at checkout, so a client-submitted total can be
compared against an identical computation.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from common.helpers import money
from config.settings import PricingConfig

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PricedLine:
    """A cart line joined with catalog prices (snapshot-ready)."""
    product_id: int
    quantity: int
    unit_price: Decimal
    variant_id: Optional[int] = None
    variant_adjustment: Decimal = ZERO
    product_name: str = ""
    variant_name: Optional[str] = None

    @property
    def effective_unit_price(self) -> Decimal:
        return money(Decimal(self.unit_price) + Decimal(self.variant_adjustment))

    @property
    def line_subtotal(self) -> Decimal:
        return money(self.effective_unit_price * self.quantity)


@dataclass(frozen=True)
class AppliedCoupon:
    code: str
    discount_amount: Decimal
    min_purchase: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "discount_amount": str(money(self.discount_amount)),
            "min_purchase": str(money(self.min_purchase)),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["AppliedCoupon"]:
        if not data or not data.get("code"):
            return None
        return cls(
            code=data["code"],
            discount_amount=money(data.get("discount_amount")),
            min_purchase=money(data.get("min_purchase")),
        )


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total: Decimal
    coupon_code: Optional[str] = None
    item_count: int = 0
    lines: List[PricedLine] = field(default_factory=list, compare=False)

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "shipping_cost": str(self.shipping_cost),
            "total": str(self.total),
            "coupon_code": self.coupon_code,
            "item_count": self.item_count,
        }


def calculate_subtotal(lines: Iterable[PricedLine]) -> Decimal:
    """Σ (unit price + variant adjustment) × quantity."""
    return money(sum((line.line_subtotal for line in lines), ZERO))


def calculate_shipping(subtotal: Decimal, config: PricingConfig) -> Decimal:
    """Flat fee below the free-shipping threshold; an empty cart ships free."""
    if subtotal <= 0 or subtotal >= config.free_shipping_threshold:
        return ZERO
    return money(config.flat_shipping_fee)


def calculate_discount(subtotal: Decimal, coupon: Optional[AppliedCoupon]) -> Decimal:
    """An applied coupon only counts while the subtotal still meets its minimum."""
    if coupon is None:
        return ZERO
    if subtotal < money(coupon.min_purchase):
        return ZERO
    return money(coupon.discount_amount)


def calculate_totals(
    lines: Iterable[PricedLine],
    coupon: Optional[AppliedCoupon] = None,
    config: Optional[PricingConfig] = None,
) -> CartTotals:
    """
    Price a cart.

    Args:
        lines: priced cart lines
        coupon: the cart's applied coupon, if any
        config: thresholds; defaults to PricingConfig()

    Returns:
        CartTotals with total = max(0, subtotal - discount + shipping)
    """
    config = config or PricingConfig()
    lines = list(lines)

    subtotal = calculate_subtotal(lines)
    shipping = calculate_shipping(subtotal, config)
    discount = calculate_discount(subtotal, coupon)
    total = max(ZERO, money(subtotal - discount + shipping))

    return CartTotals(
        subtotal=subtotal,
        discount_amount=discount,
        shipping_cost=shipping,
        total=total,
        coupon_code=coupon.code if coupon and discount > 0 else None,
        item_count=sum(line.quantity for line in lines),
        lines=lines,
    )


def totals_match(client_value, server_value: Decimal, epsilon: Decimal = Decimal("0.01")) -> bool:
    """True when a client-submitted amount agrees with the server's within epsilon."""
    if client_value is None:
        return False
    return abs(money(client_value) - money(server_value)) <= epsilon
