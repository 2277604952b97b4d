"""
Order Module - Service Layer
===============================
Order factory (validate, re-price, persist), queries and customer cancellation.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from config.settings import PricingConfig, pricing_config
from modules.order.models import Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod
from modules.order import state_machine
from modules.catalog.service import catalog_service
from modules.coupon.service import coupon_service
from modules.pricing.calculator import PricedLine, calculate_subtotal, calculate_totals, totals_match
from common.exceptions import ValidationError, NotFoundError, ExternalServiceError
from common.helpers import money, parse_money, safe_int

logger = logging.getLogger("verdant.order")

REQUIRED_ADDRESS_FIELDS = ("address_line1", "city", "state", "postal_code")
PAYMENT_METHODS = {m.value for m in PaymentMethod}


def normalize_address(address: dict) -> dict:
    """Copy of the address with `pin` always present (pin | postal_code | pincode)."""
    normalized = dict(address)
    normalized["pin"] = (
        address.get("pin") or address.get("postal_code") or address.get("pincode") or None
    )
    return normalized


class OrderService:

    def __init__(self, config: Optional[PricingConfig] = None):
        self.config = config or pricing_config()

    # ==========================================
    # Create
    # ==========================================

    def create_order(
        self,
        db: Session,
        lines: Iterable[dict],
        shipping_address: dict,
        contact: dict,
        payment_method: str,
        client_totals: dict,
        coupon_code: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Order:
        """
        Create a pending order from submitted cart lines.

        Everything is validated before the first write: lines, payment method,
        address, contact, catalog lookups and the server-side re-pricing that the
        client's subtotal/total must match. The header is flushed first for its
        id; a failure while writing items discards the header.

        lines: [{"product_id", "variant_id"?, "quantity"}]
        contact: {"name"?, "email"?, "phone"?}
        client_totals: {"subtotal", "total"}

        Raises ValidationError (incl. CouponValidationError) or ExternalServiceError.
        """
        lines = list(lines or [])
        shipping_address = shipping_address or {}
        contact = contact or {}

        # 1. Shape
        if not lines:
            raise ValidationError("Your cart is empty")

        payment_method = (payment_method or "").strip().lower()
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError("Unsupported payment method")

        missing = [f for f in REQUIRED_ADDRESS_FIELDS if not str(shipping_address.get(f) or "").strip()]
        if missing:
            raise ValidationError(f"Incomplete shipping address: {', '.join(missing)}")

        email = (contact.get("email") or "").strip() or None
        phone = (contact.get("phone") or "").strip() or None
        if not email and not phone:
            raise ValidationError("Either email or phone is required")

        # 2. Catalog + pricing
        priced = self._price_lines(db, lines)
        subtotal = calculate_subtotal(priced)

        applied = None
        if coupon_code and coupon_code.strip():
            applied = coupon_service.ensure_valid(db, coupon_code, subtotal)

        totals = calculate_totals(priced, applied, self.config)

        # 3. Client totals are checked, never trusted
        client_subtotal = parse_money((client_totals or {}).get("subtotal"))
        client_total = parse_money((client_totals or {}).get("total"))
        if client_subtotal is None or client_total is None:
            raise ValidationError("Invalid totals supplied")
        if not (
            totals_match(client_subtotal, totals.subtotal, self.config.totals_epsilon)
            and totals_match(client_total, totals.total, self.config.totals_epsilon)
        ):
            logger.warning(
                f"Totals mismatch: client subtotal={client_subtotal} total={client_total}, "
                f"server subtotal={totals.subtotal} total={totals.total}"
            )
            raise ValidationError("Order totals do not match current prices. Please review your cart.")

        # 4. Write header
        address = normalize_address(shipping_address)
        is_cod = payment_method == PaymentMethod.COD.value
        order = Order(
            user_id=user_id,
            customer_name=(contact.get("name") or "").strip() or address.get("full_name") or None,
            customer_email=email,
            customer_phone=phone or address.get("phone") or None,
            shipping_address=address,
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            shipping_cost=totals.shipping_cost,
            total=totals.total,
            coupon_code=totals.coupon_code,
            payment_method=payment_method,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.UNPAID.value if is_cod else PaymentStatus.PENDING.value,
        )
        db.add(order)
        db.flush()  # get order.id
        order_id = order.id

        # 5. Write items (header is discarded on failure)
        try:
            for item in self._build_items(priced):
                item.order_id = order_id
                db.add(item)
            db.flush()
        except (SQLAlchemyError, ValueError, TypeError) as e:
            logger.error(f"Order #{order_id}: item insert failed, discarding header: {e}")
            db.rollback()
            raise ExternalServiceError("Failed to create order. Please try again.")

        state_machine.log_status_change(
            db, order, "status", None, OrderStatus.PENDING, "customer" if user_id else "guest", "Order placed",
        )

        # COD is placed without a gateway: count the coupon now
        if is_cod:
            coupon_service.redeem(db, order)

        db.flush()
        logger.info(f"Order #{order_id} created: {payment_method}, total={order.total}, items={len(priced)}")
        return order

    def _price_lines(self, db: Session, lines: List[dict]) -> List[PricedLine]:
        priced = []
        for raw in lines:
            product_id = safe_int(raw.get("product_id"))
            variant_id = safe_int(raw.get("variant_id")) if raw.get("variant_id") is not None else None
            quantity = safe_int(raw.get("quantity"))
            if not product_id or quantity is None or quantity < 1:
                raise ValidationError("Each item needs a product and a quantity of at least 1")

            product, variant = catalog_service.resolve(db, product_id, variant_id)
            if not product:
                raise ValidationError(f"Product {product_id} is no longer available")
            if variant_id is not None and not variant:
                raise ValidationError(f"Variant {variant_id} does not belong to product {product_id}")

            priced.append(PricedLine(
                product_id=product.id,
                variant_id=variant.id if variant else None,
                quantity=quantity,
                unit_price=money(product.unit_price),
                variant_adjustment=money(variant.price_adjustment) if variant else Decimal("0.00"),
                product_name=product.name,
                variant_name=variant.name if variant else None,
            ))
        return priced

    def _build_items(self, priced: List[PricedLine]) -> List[OrderItem]:
        return [
            OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product_name,
                variant_name=line.variant_name,
                quantity=line.quantity,
                unit_price=line.effective_unit_price,
                subtotal=line.line_subtotal,
            )
            for line in priced
        ]

    # ==========================================
    # Cancel (customer)
    # ==========================================

    def cancel_order(self, db: Session, order_id: int, user_id: int, reason: str = "") -> Order:
        """
        Customer cancellation of their own pending/processing order. An
        existing carrier shipment is cancelled first.
        """
        order = self.get_order_for_update(db, order_id)
        if not order or order.user_id != user_id:
            raise NotFoundError("Order not found")

        state_machine.ensure_cancellable(order)

        if order.shipment_created_at and not order.shipment_cancelled_at:
            from modules.shipment.service import shipment_service
            shipment_service.cancel_shipment(db, order_id=order.id)

        state_machine.cancel(db, order, reason or "Cancelled by customer", changed_by="customer")
        logger.info(f"Order #{order.id} cancelled by user #{user_id}")
        return order

    # ==========================================
    # Query
    # ==========================================

    def get_order_by_id(self, db: Session, order_id: int) -> Optional[Order]:
        return db.query(Order).filter(Order.id == order_id).first()

    def get_order_for_update(self, db: Session, order_id: int) -> Optional[Order]:
        return db.query(Order).filter(Order.id == order_id).with_for_update().first()

    def get_user_orders(self, db: Session, user_id: int) -> List[Order]:
        return db.query(Order).filter(
            Order.user_id == user_id,
        ).order_by(desc(Order.created_at), desc(Order.id)).all()

    def get_order_by_awb(self, db: Session, awb: str) -> Optional[Order]:
        return db.query(Order).filter(Order.awb == awb).first()

    def get_order_by_provider_order_id(self, db: Session, provider_order_id: str) -> Optional[Order]:
        return (
            db.query(Order)
            .filter(Order.provider_order_id == provider_order_id)
            .with_for_update()
            .first()
        )


# Singleton
order_service = OrderService()
