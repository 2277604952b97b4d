"""
Payment Service
=================
Dual-gateway orchestration: Stripe (synchronous confirm) and Razorpay
(asynchronous, confirmed by signed webhook). The gateway is chosen by the
order's payment_method through the registry.

Amounts always come from the stored order total, never from the client.
"""

import json
import logging
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from modules.order.models import Order, OrderStatus, PaymentMethod, PaymentStatus
from modules.order.service import order_service
from modules.order import state_machine
from modules.coupon.service import coupon_service
from common.exceptions import (
    ConfigurationError, ConflictError, NotFoundError, SecurityError, ValidationError,
)
from common.helpers import safe_int, to_minor_units
from common.security import order_token_matches

# Import gateway modules to trigger register_gateway() calls
from modules.payment.gateways import get_gateway, GatewayPaymentRequest, PaymentGateway
import modules.payment.gateways.stripe      # noqa: F401
import modules.payment.gateways.razorpay    # noqa: F401

logger = logging.getLogger("verdant.payment")

CONFIRMING_EVENTS = {"payment.captured", "order.paid"}
FAILING_EVENTS = {"payment.failed"}


class PaymentService:

    def __init__(self, gateways: Optional[Dict[str, PaymentGateway]] = None):
        # None = use the global registry
        self.gateways = gateways

    def _gateway(self, name: str) -> PaymentGateway:
        gw = self.gateways.get(name) if self.gateways is not None else get_gateway(name)
        if not gw:
            raise ConfigurationError(f"Payment method {name} is not available")
        return gw

    def _load_order(self, db: Session, order_id: int, user=None, order_token: Optional[str] = None) -> Order:
        """
        Locked order row. A signed-in order is only visible to its owner; a
        guest order needs the payment token issued when it was placed.
        """
        order = order_service.get_order_for_update(db, order_id)
        if not order:
            raise NotFoundError("Order not found")
        if user is not None and user.is_admin:
            return order
        if order.user_id is not None:
            if user is None or user.id != order.user_id:
                raise NotFoundError("Order not found")
        elif not order_token_matches(order_token, order.id):
            raise NotFoundError("Order not found")
        return order

    # ==========================================
    # 🏦 Create payment
    # ==========================================

    def create_payment_intent(
        self, db: Session, order_id: int, user=None, order_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create the provider-side payment for a pending prepaid order.
        Stripe: confirmed PaymentIntent (client_secret + intent id).
        Razorpay: provider order id, amount, currency and public key id.
        """
        order = self._load_order(db, order_id, user, order_token)

        if order.payment_method == PaymentMethod.COD:
            raise ConflictError("Cash on delivery orders are paid on delivery")
        if order.status == OrderStatus.CANCELLED:
            raise ConflictError("This order has been cancelled")
        if order.payment_status == PaymentStatus.PAID:
            raise ConflictError("This order is already paid")

        gw = self._gateway(order.payment_method)
        result = gw.create_payment(GatewayPaymentRequest(
            order_id=order.id,
            amount=order.total,
            amount_minor=to_minor_units(order.total),
            description=f"Verdant order #{order.id}",
            customer_email=order.customer_email or "",
            customer_name=order.customer_name or "",
            customer_phone=order.customer_phone or "",
            existing_reference=(
                order.provider_order_id if order.payment_method == PaymentMethod.RAZORPAY else order.payment_ref
            ),
        ))

        if order.payment_method == PaymentMethod.RAZORPAY:
            order.provider_order_id = result.reference
        else:
            order.payment_ref = result.reference
        db.flush()

        logger.info(f"Payment created for order #{order.id} via {gw.name}: {result.reference}")
        return {"order_id": order.id, "gateway": gw.name, **result.to_dict()}

    # ==========================================
    # ✅ Verify by reference
    # ==========================================

    def verify_payment(
        self, db: Session, order_id: int, reference: str, user=None, order_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Ask the gateway whether `reference` paid this order.
        success → paid / processing (+ coupon redemption); a terminal decline
        → failed; anything else leaves the order as it was. Never regresses paid.
        """
        order = self._load_order(db, order_id, user, order_token)

        if order.payment_method == PaymentMethod.COD:
            raise ConflictError("Cash on delivery orders are paid on delivery")

        # Double verification protection
        if order.payment_status == PaymentStatus.PAID:
            return self._result(order, True, "paid", "This order is already paid")

        if not reference:
            raise ValidationError("Payment reference is required")

        gw = self._gateway(order.payment_method)
        result = gw.verify_payment(reference, order)

        if result.success:
            state_machine.confirm_payment(db, order, result.reference or reference, changed_by=f"gateway:{gw.name}")
            coupon_service.redeem(db, order)
            return self._result(order, True, result.status, "Payment successful")

        if result.terminal:
            state_machine.mark_payment_failed(db, order, f"gateway:{gw.name}", result.error_message)
        return self._result(order, False, result.status, result.error_message or "Payment not confirmed")

    def _result(self, order: Order, success: bool, status: str, message: str) -> Dict[str, Any]:
        return {
            "success": success,
            "status": status,
            "message": message,
            "order_id": order.id,
            "order_status": order.status,
            "payment_status": order.payment_status,
        }

    # ==========================================
    # 🔔 Razorpay webhook
    # ==========================================

    def handle_razorpay_webhook(self, db: Session, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Signed webhook. The signature is checked over the raw bytes before
        anything is parsed; a mismatch raises SecurityError with no write.
        """
        gw = self._gateway(PaymentMethod.RAZORPAY.value)
        if not gw.verify_webhook_signature(raw_body, signature):
            logger.warning("Razorpay webhook rejected: bad signature")
            raise SecurityError()

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Malformed webhook payload")
        if not isinstance(payload, dict):
            raise ValidationError("Malformed webhook payload")

        event = payload.get("event", "")
        entities = payload.get("payload") or {}
        payment = (entities.get("payment") or {}).get("entity") or {}
        rp_order = (entities.get("order") or {}).get("entity") or {}

        order = self._correlate(db, payment, rp_order)
        if not order:
            logger.warning(f"Razorpay webhook {event}: no matching order")
            raise NotFoundError("Order not found")

        if event in CONFIRMING_EVENTS:
            amount = payment.get("amount", rp_order.get("amount_paid"))
            if amount is not None and int(amount) != to_minor_units(order.total):
                logger.error(
                    f"Razorpay webhook {event}: amount {amount} does not match order #{order.id} "
                    f"({to_minor_units(order.total)})"
                )
                return {"handled": False, "event": event, "order_id": order.id}

            changed = state_machine.confirm_payment(db, order, payment.get("id"), changed_by="webhook")
            if changed:
                coupon_service.redeem(db, order)
            logger.info(f"Razorpay webhook {event}: order #{order.id} paid (changed={changed})")
            return {"handled": True, "changed": changed, "event": event, "order_id": order.id}

        if event in FAILING_EVENTS:
            reason = payment.get("error_description") or payment.get("error_code")
            changed = state_machine.mark_payment_failed(db, order, "webhook", reason)
            return {"handled": True, "changed": changed, "event": event, "order_id": order.id}

        logger.info(f"Razorpay webhook {event}: ignored")
        return {"handled": False, "event": event, "order_id": order.id}

    def _correlate(self, db: Session, payment: dict, rp_order: dict) -> Optional[Order]:
        """notes.order_id first, then the stored provider order id."""
        notes = payment.get("notes") or rp_order.get("notes") or {}
        order_id = safe_int(notes.get("order_id")) if isinstance(notes, dict) else None
        if order_id:
            order = order_service.get_order_for_update(db, order_id)
            if order and order.payment_method == PaymentMethod.RAZORPAY:
                return order

        provider_order_id = payment.get("order_id") or rp_order.get("id")
        if provider_order_id:
            return order_service.get_order_by_provider_order_id(db, provider_order_id)
        return None

    # ==========================================
    # ↩️ Razorpay hosted-checkout callback (advisory)
    # ==========================================

    def verify_checkout_callback(
        self, db: Session, provider_order_id: str, payment_id: str, signature: str,
    ) -> Dict[str, Any]:
        """
        Check the browser callback signature. Advisory only: the order is
        confirmed by the webhook or by verify_payment, never here.
        """
        gw = self._gateway(PaymentMethod.RAZORPAY.value)
        if not gw.verify_checkout_signature(provider_order_id, payment_id, signature):
            logger.warning(f"Razorpay callback signature mismatch for {provider_order_id}")
            raise SecurityError()

        order = order_service.get_order_by_provider_order_id(db, provider_order_id)
        if not order:
            raise NotFoundError("Order not found")

        return {
            "verified": True,
            "order_id": order.id,
            "payment_status": order.payment_status,
        }


payment_service = PaymentService()
