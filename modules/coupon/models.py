"""
Coupon Module - Models
========================
Percentage or fixed-amount discount codes.

Features:
  - Percentage or Fixed amount
  - Usage limit (total)
  - Date range (valid_from / valid_until)
  - Minimum purchase
  - Redemption audit trail (one row per order)
"""

import enum
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


# ==========================================
# Enums
# ==========================================

class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ==========================================
# Coupon
# ==========================================

class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False, index=True)  # stored upper-case
    description = Column(String(255), nullable=True)

    discount_type = Column(String, default=DiscountType.PERCENTAGE, nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)  # percent (e.g. 10) or fixed amount

    min_purchase = Column(Numeric(12, 2), default=0, nullable=False)

    # Usage limits
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)

    # Date range
    valid_from = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    redemptions = relationship("CouponRedemption", back_populates="coupon", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_coupon_code_active", "code", "is_active"),
    )

    @property
    def discount_display(self) -> str:
        if self.discount_type == DiscountType.PERCENTAGE:
            return f"{Decimal(self.discount_value).normalize():f}%"
        return f"₹{self.discount_value:,.2f}"

    def __repr__(self):
        return f"<Coupon {self.code}>"


# ==========================================
# CouponRedemption (audit trail)
# ==========================================

class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    coupon = relationship("Coupon", back_populates="redemptions")
    order = relationship("Order")
