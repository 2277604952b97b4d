"""
Cart Module - Models
=====================
Persisted cart for signed-in users: one cart per user, lines unique by
(product, variant), quantity >= 1. The applied coupon lives on the cart row.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime,
    UniqueConstraint, CheckConstraint, Index, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    # Applied coupon (at most one)
    coupon_code = Column(String(50), nullable=True)
    coupon_discount = Column(Numeric(12, 2), nullable=True)
    coupon_min_purchase = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id])
    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id",
    )


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", "variant_id", name="uq_cart_product_variant"),
        # NULL variant ids never collide in the constraint above
        Index(
            "uq_cart_product_no_variant", "cart_id", "product_id", unique=True,
            postgresql_where=text("variant_id IS NULL"), sqlite_where=text("variant_id IS NULL"),
        ),
        CheckConstraint("quantity >= 1", name="ck_cart_qty"),
    )
