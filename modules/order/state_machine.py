"""
Order Module - State Machine
==============================
Allowed transitions for order status and payment status.

    pending ──► processing ──► shipped ──► delivered
       │             │
       └──► cancelled ◄┘

Payment status is monotonic: once paid it never regresses. Every change is
appended to OrderStatusLog.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from modules.order.models import Order, OrderStatus, PaymentStatus, OrderStatusLog
from common.exceptions import ConflictError, ValidationError
from common.helpers import now_utc

logger = logging.getLogger("verdant.order")


ORDER_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value},
    OrderStatus.PROCESSING.value: {OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}

TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}
CANCELLABLE_STATUSES = {OrderStatus.PENDING.value, OrderStatus.PROCESSING.value}

# Admin edits accepted through the status endpoint
ADMIN_TARGETS = {OrderStatus.PROCESSING.value, OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value}


def _value(status) -> Optional[str]:
    return status.value if isinstance(status, (OrderStatus, PaymentStatus)) else status


def can_transition(current, target) -> bool:
    return _value(target) in ORDER_TRANSITIONS.get(_value(current), set())


def log_status_change(
    db: Session,
    order: Order,
    field: str,
    old_value,
    new_value,
    changed_by: str = "system",
    description: Optional[str] = None,
) -> OrderStatusLog:
    entry = OrderStatusLog(
        order_id=order.id,
        field=field,
        old_value=_value(old_value),
        new_value=_value(new_value),
        changed_by=changed_by,
        description=description,
    )
    db.add(entry)
    return entry


def transition(
    db: Session, order: Order, target, changed_by: str = "system", description: Optional[str] = None,
) -> Order:
    """Move order.status to `target` or raise ConflictError."""
    current = _value(order.status)
    target = _value(target)
    if target not in ORDER_TRANSITIONS:
        raise ValidationError(f"Unknown order status: {target}")
    if not can_transition(current, target):
        raise ConflictError(f"Cannot move order from {current} to {target}")

    order.status = target
    log_status_change(db, order, "status", current, target, changed_by, description)
    db.flush()
    logger.info(f"Order #{order.id}: status {current} -> {target} by {changed_by}")
    return order


# ==========================================
# Payment
# ==========================================

def confirm_payment(
    db: Session, order: Order, payment_ref: Optional[str] = None, changed_by: str = "system",
) -> bool:
    """
    Record a verified payment. Returns False (no-op) when already paid, so
    duplicate webhooks and double verification change nothing.
    """
    if _value(order.payment_status) == PaymentStatus.PAID.value:
        return False

    old_payment = _value(order.payment_status)
    order.payment_status = PaymentStatus.PAID.value
    order.paid_at = now_utc()
    if payment_ref:
        order.payment_ref = payment_ref
    log_status_change(db, order, "payment_status", old_payment, PaymentStatus.PAID, changed_by)

    if _value(order.status) == OrderStatus.PENDING.value:
        transition(db, order, OrderStatus.PROCESSING, changed_by, "Payment confirmed")
    elif _value(order.status) == OrderStatus.CANCELLED.value:
        logger.warning(f"Order #{order.id}: payment captured after cancellation, refund required")

    db.flush()
    return True


def mark_payment_failed(
    db: Session, order: Order, changed_by: str = "system", description: Optional[str] = None,
) -> bool:
    """Mark the payment failed unless it is already paid (or already failed)."""
    current = _value(order.payment_status)
    if current in (PaymentStatus.PAID.value, PaymentStatus.FAILED.value):
        return False

    order.payment_status = PaymentStatus.FAILED.value
    log_status_change(db, order, "payment_status", current, PaymentStatus.FAILED, changed_by, description)
    db.flush()
    logger.info(f"Order #{order.id}: payment failed ({description or 'no detail'})")
    return True


# ==========================================
# Cancellation
# ==========================================

def ensure_cancellable(order: Order):
    current = _value(order.status)
    if current == OrderStatus.CANCELLED.value:
        raise ConflictError("Order is already cancelled")
    if current not in CANCELLABLE_STATUSES:
        raise ConflictError("This order can no longer be cancelled online. Please contact support.")


def cancel(db: Session, order: Order, reason: Optional[str] = None, changed_by: str = "customer") -> Order:
    """Cancel a pending or processing order. Later states need support."""
    ensure_cancellable(order)

    order.cancellation_reason = reason or None
    order.cancelled_at = now_utc()
    return transition(db, order, OrderStatus.CANCELLED, changed_by, reason)


# ==========================================
# Admin edits
# ==========================================

def admin_update(
    db: Session,
    order: Order,
    status=None,
    tracking_number: Optional[str] = None,
    admin_id: Optional[int] = None,
) -> Order:
    """Accept an admin's move to processing/shipped/delivered and/or a tracking number."""
    changed_by = f"admin:{admin_id}" if admin_id else "admin"

    if tracking_number is not None:
        tracking_number = tracking_number.strip() or None
        if tracking_number != order.tracking_number:
            if _value(order.status) in TERMINAL_STATUSES:
                raise ConflictError(f"Order is {order.status}; tracking number can no longer change")
            log_status_change(db, order, "tracking_number", order.tracking_number, tracking_number, changed_by)
            order.tracking_number = tracking_number

    if status is not None and _value(status) != _value(order.status):
        target = _value(status)
        if target not in ADMIN_TARGETS:
            raise ValidationError(f"Admins can only move orders to: {', '.join(sorted(ADMIN_TARGETS))}")
        transition(db, order, target, changed_by)

    db.flush()
    return order
