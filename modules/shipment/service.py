"""
Shipment Service
==================
Create, cancel and label carrier shipments for orders.

shipment_created_at is the idempotency guard: once set, create_shipment
returns the existing result without calling the carrier again. Failures are
recorded on the order (carrier_response) and can be retried.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from config.settings import carrier_config
from modules.order.models import Order, OrderStatus, PaymentMethod, ShipmentStatus
from modules.order.service import order_service
from modules.order import state_machine
from modules.shipment.carrier import (
    DelhiveryClient, ShipmentRequest, LabelDocument, extract_awb,
)
from common.exceptions import (
    ConflictError, ExternalServiceError, NotFoundError, UnpaidOrderError, ValidationError,
)
from common.helpers import now_utc, money

logger = logging.getLogger("verdant.shipment")

PAID_STATUSES = {"paid", "captured", "succeeded"}
INVALID_ADDRESS = "Invalid shipping address"


class ShipmentService:

    def __init__(self, carrier=None):
        self.carrier = carrier or DelhiveryClient(carrier_config())

    # ==========================================
    # 📦 Create
    # ==========================================

    def create_shipment(self, db: Session, order_id: int, changed_by: str = "admin") -> Dict[str, Any]:
        """
        Book a carrier shipment for an order.

        Raises:
            NotFoundError, ConflictError (cancelled), UnpaidOrderError (prepaid, unpaid),
            ValidationError (address; recorded on the order),
            ExternalServiceError (carrier; raw body recorded on the order)
        """
        order = order_service.get_order_for_update(db, order_id)
        if not order:
            raise NotFoundError("Order not found")

        # Idempotency guard
        if order.shipment_created_at:
            logger.info(f"Order #{order.id}: shipment already exists ({order.awb}), carrier not called")
            return self._result(order, created=False, message="Shipment already exists")

        if order.status == OrderStatus.CANCELLED:
            raise ConflictError("Cannot create shipment for a cancelled order")

        is_cod = (order.payment_method or "").lower() == PaymentMethod.COD.value
        if not is_cod and (order.payment_status or "").lower() not in PAID_STATUSES:
            raise UnpaidOrderError()

        address = order.shipping_address or {}
        pin = address.get("pin") or address.get("postal_code")
        if not (pin and address.get("city") and address.get("state")
                and order.customer_name and order.customer_phone):
            order.carrier_response = {"error": INVALID_ADDRESS}
            db.flush()
            logger.warning(f"Order #{order.id}: shipment rejected, incomplete address/contact")
            raise ValidationError(INVALID_ADDRESS)

        request = ShipmentRequest(
            order_id=order.id,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            address_line1=address.get("address_line1") or "",
            address_line2=address.get("address_line2") or "",
            city=address["city"],
            state=address["state"],
            pin=str(pin),
            country=address.get("country") or "India",
            items=[(item.product_name, item.quantity) for item in order.items],
            payment_mode="COD" if is_cod else "Prepaid",
            cod_amount=money(order.total) if is_cod else money(0),
        )

        try:
            response = self.carrier.create_shipment(request)
        except ExternalServiceError as e:
            order.carrier_response = {"error": e.message}
            db.flush()
            raise

        if not response.ok:
            order.carrier_response = response.body
            db.flush()
            logger.error(f"Order #{order.id}: carrier rejected shipment (HTTP {response.status})")
            raise ExternalServiceError("Failed to create shipment", details=response.body)

        awb = extract_awb(response.body)
        old_status = order.shipment_status
        order.courier = self.carrier.name
        order.carrier_response = response.body
        order.shipment_created_at = now_utc()
        order.shipment_status = ShipmentStatus.PENDING.value
        if awb:
            order.awb = awb
        state_machine.log_status_change(
            db, order, "shipment_status", old_status, order.shipment_status, changed_by,
            f"{self.carrier.name} AWB {awb or 'pending'}",
        )
        db.flush()

        if not awb:
            logger.warning(f"Order #{order.id}: shipment created but no AWB in carrier response")
        logger.info(f"Order #{order.id}: shipment created, AWB={awb}")
        return self._result(order, created=True, message="Shipment created")

    def _result(self, order: Order, created: bool, message: str) -> Dict[str, Any]:
        return {
            "created": created,
            "message": message,
            "order_id": order.id,
            "courier": order.courier,
            "awb": order.awb,
            "shipment_status": order.shipment_status,
            "shipment_created_at": order.shipment_created_at.isoformat() if order.shipment_created_at else None,
        }

    # ==========================================
    # ❌ Cancel
    # ==========================================

    def cancel_shipment(
        self, db: Session, awb: Optional[str] = None, order_id: Optional[int] = None, changed_by: str = "admin",
    ) -> Dict[str, Any]:
        """Cancel by AWB or order id. On carrier failure the order is left unchanged."""
        if not awb and not order_id:
            raise ValidationError("awb or order_id required")

        if awb:
            order = db.query(Order).filter(Order.awb == awb).with_for_update().first()
        else:
            order = order_service.get_order_for_update(db, order_id)
            if not order:
                raise NotFoundError("Order not found")
            awb = order.awb
            if not awb:
                raise NotFoundError("AWB not found for this order")

        if order and order.shipment_cancelled_at:
            return {"cancelled": True, "awb": awb, "order_id": order.id, "message": "Shipment already cancelled"}

        response = self.carrier.cancel_shipment(awb)
        if not response.ok:
            logger.error(f"Carrier cancel failed for AWB {awb}")
            raise ExternalServiceError("Failed to cancel shipment", details=response.body)

        if order:
            old_status = order.shipment_status
            order.shipment_status = ShipmentStatus.CANCELLED.value
            order.shipment_cancelled_at = now_utc()
            order.carrier_response = {**(order.carrier_response or {}), "cancel": response.body}
            state_machine.log_status_change(
                db, order, "shipment_status", old_status, order.shipment_status, changed_by,
            )
            db.flush()

        logger.info(f"Shipment {awb} cancelled")
        return {"cancelled": True, "awb": awb, "order_id": order.id if order else None, "message": "Shipment cancelled"}

    # ==========================================
    # 🏷️ Label
    # ==========================================

    def get_label(self, db: Session, awb: str) -> LabelDocument:
        """Carrier label endpoints in turn, then the label_url stored on the order."""
        order = order_service.get_order_by_awb(db, awb)

        document = self.carrier.fetch_label(awb)
        if document:
            if order and document.source_url and order.label_url != document.source_url:
                order.label_url = document.source_url
                db.flush()
            return document

        if order and order.label_url:
            document = self.carrier.download(order.label_url)
            if document:
                return document

        raise NotFoundError("Label not found")

    # ==========================================
    # 🔁 Operator retry
    # ==========================================

    def reset_shipment(self, db: Session, order_id: int, changed_by: str = "admin") -> Dict[str, Any]:
        """
        Clear the idempotency guard so create_shipment can run again. Only
        allowed when the carrier holds no live shipment for the order.
        """
        order = order_service.get_order_for_update(db, order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.awb and not order.shipment_cancelled_at:
            raise ConflictError("Cancel the existing shipment before retrying")

        old_status = order.shipment_status
        order.shipment_created_at = None
        order.shipment_cancelled_at = None
        order.awb = None
        order.courier = None
        order.shipment_status = ShipmentStatus.PENDING_RETRY.value
        state_machine.log_status_change(
            db, order, "shipment_status", old_status, order.shipment_status, changed_by, "Shipment reset for retry",
        )
        db.flush()
        logger.info(f"Order #{order.id}: shipment reset for retry")
        return self._result(order, created=False, message="Shipment reset")


# Singleton
shipment_service = ShipmentService()
