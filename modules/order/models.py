"""
Order Module - Models
======================
Order header with price/name snapshot per item, embedded shipment fields,
and an append-only status log.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Text, JSON,
    ForeignKey, DateTime,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    CHECKING = "checking"
    PAID = "paid"
    FAILED = "failed"
    UNPAID = "unpaid"      # COD, collected on delivery


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    COD = "cod"


class ShipmentStatus(str, enum.Enum):
    PENDING = "Pending"
    PENDING_RETRY = "Pending Retry"
    CANCELLED = "cancelled"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)  # None = guest

    # Contact + address snapshot
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    shipping_address = Column(JSON, nullable=False)

    # Money snapshot
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    shipping_cost = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    coupon_code = Column(String, nullable=True)

    status = Column(String, default=OrderStatus.PENDING, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Payment
    payment_method = Column(String, nullable=False)     # stripe / razorpay / cod
    payment_status = Column(String, default=PaymentStatus.PENDING, nullable=False)
    payment_ref = Column(String, nullable=True)         # provider payment id / intent id
    provider_order_id = Column(String, nullable=True, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Shipment
    tracking_number = Column(String, nullable=True)
    courier = Column(String, nullable=True)
    awb = Column(String, nullable=True, index=True)
    carrier_response = Column(JSON, nullable=True)
    shipment_created_at = Column(DateTime(timezone=True), nullable=True)
    shipment_status = Column(String, nullable=True)
    shipment_cancelled_at = Column(DateTime(timezone=True), nullable=True)
    label_url = Column(String, nullable=True)

    # Cancellation
    cancellation_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    status_logs = relationship(
        "OrderStatusLog", back_populates="order", cascade="all, delete-orphan", order_by="OrderStatusLog.id",
    )

    @property
    def is_prepaid(self) -> bool:
        return self.payment_method != PaymentMethod.COD

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def status_label(self) -> str:
        labels = {
            OrderStatus.PENDING: "Awaiting payment",
            OrderStatus.PROCESSING: "Processing",
            OrderStatus.SHIPPED: "Shipped",
            OrderStatus.DELIVERED: "Delivered",
            OrderStatus.CANCELLED: "Cancelled",
        }
        return labels.get(self.status, self.status)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "status": self.status,
            "status_label": self.status_label,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "shipping_cost": str(self.shipping_cost),
            "total": str(self.total),
            "coupon_code": self.coupon_code,
            "tracking_number": self.tracking_number,
            "courier": self.courier,
            "awb": self.awb,
            "shipment_status": self.shipment_status,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)

    # Snapshot at time of purchase
    product_name = Column(String, nullable=False)
    variant_name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)   # includes variant adjustment
    subtotal = Column(Numeric(12, 2), nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "subtotal": str(self.subtotal),
        }


class OrderStatusLog(Base):
    __tablename__ = "order_status_logs"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    field = Column(String, nullable=False)          # status / payment_status / tracking_number / shipment_status
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    changed_by = Column(String, nullable=True)      # system / customer / admin:<id> / webhook
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="status_logs")
