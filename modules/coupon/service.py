"""
Coupon Service
================
Validate, calculate and redeem coupons.

Validation chain (short-circuits on the first failure):
  1. Code exists (case-insensitive)
  2. Coupon is active
  3. Date range (valid_from / valid_until)
  4. Total usage limit
  5. Minimum purchase
  6. Calculate discount amount

Validation never writes. Redemption (used_count + audit row) happens once per
order, after payment is confirmed or a COD order is placed.
"""

import enum
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from modules.coupon.models import Coupon, CouponRedemption, DiscountType
from modules.pricing.calculator import AppliedCoupon
from common.exceptions import CouponValidationError
from common.helpers import now_utc, as_utc, money

logger = logging.getLogger("verdant.coupon")


class CouponRejection(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    MINIMUM_NOT_MET = "MINIMUM_NOT_MET"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def calculate_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Percentage of the subtotal, or a fixed amount capped at the subtotal."""
    subtotal = money(subtotal)
    value = Decimal(coupon.discount_value)
    if coupon.discount_type == DiscountType.PERCENTAGE:
        return money(subtotal * value / Decimal(100))
    return money(min(value, subtotal))


def evaluate_coupon(coupon: Optional[Coupon], subtotal: Decimal, now: datetime) -> Decimal:
    """
    Run the rule chain against a coupon row. Pure: no queries, no writes.

    Returns:
        the discount amount

    Raises:
        CouponValidationError with the first failing reason
    """
    if coupon is None:
        raise CouponValidationError(CouponRejection.NOT_FOUND.value, "Invalid coupon code")

    if not coupon.is_active:
        raise CouponValidationError(CouponRejection.INACTIVE.value, "This coupon is no longer active")

    now = as_utc(now)
    if coupon.valid_from and now < as_utc(coupon.valid_from):
        raise CouponValidationError(CouponRejection.NOT_YET_VALID.value, "This coupon is not valid yet")
    if coupon.valid_until and now > as_utc(coupon.valid_until):
        raise CouponValidationError(CouponRejection.EXPIRED.value, "This coupon has expired")

    if coupon.max_uses is not None and (coupon.used_count or 0) >= coupon.max_uses:
        raise CouponValidationError(
            CouponRejection.USAGE_LIMIT_REACHED.value, "This coupon has reached its usage limit"
        )

    min_purchase = money(coupon.min_purchase)
    if money(subtotal) < min_purchase:
        raise CouponValidationError(
            CouponRejection.MINIMUM_NOT_MET.value,
            f"Minimum purchase of ₹{min_purchase:,.2f} required for this coupon",
        )

    return calculate_discount(coupon, subtotal)


class CouponService:

    def get_by_code(self, db: Session, code: str) -> Optional[Coupon]:
        code = normalize_code(code)
        if not code:
            return None
        return db.query(Coupon).filter(Coupon.code == code).first()

    # ------------------------------------------
    # Validate (raises CouponValidationError)
    # ------------------------------------------

    def ensure_valid(
        self, db: Session, code: str, subtotal: Decimal, now: Optional[datetime] = None,
    ) -> AppliedCoupon:
        """Full validation chain. Returns the AppliedCoupon to store on a cart."""
        coupon = self.get_by_code(db, code)
        discount = evaluate_coupon(coupon, subtotal, now or now_utc())
        return AppliedCoupon(
            code=coupon.code,
            discount_amount=discount,
            min_purchase=money(coupon.min_purchase),
        )

    # ------------------------------------------
    # Verdict (no side effects, never raises on a bad code)
    # ------------------------------------------

    def validate(
        self, db: Session, code: str, subtotal: Decimal, now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        try:
            applied = self.ensure_valid(db, code, subtotal, now)
        except CouponValidationError as e:
            return {
                "valid": False,
                "code": normalize_code(code),
                "discount_amount": "0.00",
                "reason": e.reason,
                "message": e.message,
            }
        return {
            "valid": True,
            "code": applied.code,
            "discount_amount": str(applied.discount_amount),
            "min_purchase": str(applied.min_purchase),
            "reason": None,
            "message": f"Coupon {applied.code} applied",
        }

    # ------------------------------------------
    # Redeem (once per order)
    # ------------------------------------------

    def redeem(self, db: Session, order) -> Optional[CouponRedemption]:
        """
        Count the order's coupon usage. Safe to call repeatedly: the unique
        order_id on CouponRedemption means a second call returns the first row.
        """
        if not order.coupon_code:
            return None

        existing = db.query(CouponRedemption).filter(CouponRedemption.order_id == order.id).first()
        if existing:
            return existing

        coupon = (
            db.query(Coupon)
            .filter(Coupon.code == normalize_code(order.coupon_code))
            .with_for_update()
            .first()
        )
        if not coupon:
            logger.warning(f"Coupon {order.coupon_code} on order #{order.id} no longer exists; not redeemed")
            return None

        redemption = CouponRedemption(
            coupon_id=coupon.id,
            order_id=order.id,
            user_id=order.user_id,
            discount_amount=money(order.discount_amount),
        )
        db.add(redemption)
        coupon.used_count = (coupon.used_count or 0) + 1
        db.flush()

        logger.info(f"Coupon {coupon.code} redeemed for order #{order.id} (uses={coupon.used_count})")
        return redemption


# Singleton
coupon_service = CouponService()
