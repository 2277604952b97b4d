"""
Razorpay Gateway
=================
REST/JSON with Basic Auth (key id / key secret). Asynchronous: create an
order object for the hosted checkout; the payment is confirmed later by a
signed webhook or a reconciliation poll.
"""

import requests
import logging
from typing import Optional

from config.settings import RazorpayConfig, razorpay_config
from common.exceptions import ConfigurationError, ExternalServiceError
from common.helpers import to_minor_units
from common.security import verify_hmac_signature
from modules.payment.gateways import (
    GatewayPaymentRequest, GatewayCreateResult, GatewayVerifyResult, register_gateway,
)

logger = logging.getLogger("verdant.gateway.razorpay")

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"

TERMINAL_FAILURE_STATES = {"failed"}


class RazorpayGateway:
    name = "razorpay"
    label = "UPI / Netbanking (Razorpay)"

    def __init__(self, config: Optional[RazorpayConfig] = None):
        self.config = config or RazorpayConfig()

    def _ensure_configured(self):
        if not self.config.is_configured:
            raise ConfigurationError("Online payments are not available right now.")

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        url = f"{RAZORPAY_API_BASE}{path}"
        auth = (self.config.key_id, self.config.key_secret)
        try:
            if method == "GET":
                resp = requests.get(url, auth=auth, timeout=self.config.timeout)
            else:
                resp = requests.post(url, auth=auth, json=payload, timeout=self.config.timeout)
        except requests.Timeout:
            logger.warning(f"Razorpay {method} {path}: timeout")
            raise ExternalServiceError("Payment provider did not respond. Please try again.")
        except requests.RequestException as e:
            logger.error(f"Razorpay connection error: {e}")
            raise ExternalServiceError("Could not reach the payment provider. Please try again.")

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code >= 400:
            error = (data.get("error") or {}) if isinstance(data, dict) else {}
            logger.error(
                f"Razorpay {method} {path}: HTTP {resp.status_code} {error.get('code')}: {error.get('description')}"
            )
            raise ExternalServiceError(
                "The payment could not be processed. Please try again.",
                details={"status": resp.status_code, "code": error.get("code"), "description": error.get("description")},
            )
        return data

    # ------------------------------------------
    # Create
    # ------------------------------------------

    def create_payment(self, req: GatewayPaymentRequest) -> GatewayCreateResult:
        """Create a provider order; a retry reuses the earlier one while it is unpaid and for the same amount."""
        self._ensure_configured()

        if req.existing_reference:
            existing = self._request("GET", f"/orders/{req.existing_reference}")
            if existing.get("status") != "paid" and existing.get("amount") == req.amount_minor:
                logger.info(f"Razorpay create [{req.order_id}]: reusing {existing.get('id')}")
                return self._result_from_order(existing, req)

        rp_order = self._request("POST", "/orders", {
            "amount": req.amount_minor,
            "currency": self.config.currency,
            "receipt": f"order_rcptid_{req.order_id}",
            "notes": {"order_id": str(req.order_id)},
        })
        logger.info(f"Razorpay create [{req.order_id}]: {rp_order.get('id')} status={rp_order.get('status')}")

        if not rp_order.get("id"):
            raise ExternalServiceError("Payment provider did not return an order id.")
        return self._result_from_order(rp_order, req)

    def _result_from_order(self, rp_order: dict, req: GatewayPaymentRequest) -> GatewayCreateResult:
        return GatewayCreateResult(
            reference=rp_order["id"],
            amount_minor=int(rp_order.get("amount", req.amount_minor)),
            currency=rp_order.get("currency", self.config.currency),
            public_key=self.config.key_id,
            status=rp_order.get("status"),
        )

    # ------------------------------------------
    # Verify (reconciliation poll)
    # ------------------------------------------

    def verify_payment(self, reference: str, order) -> GatewayVerifyResult:
        """Fetch the payment: captured and attached to this order's provider order."""
        self._ensure_configured()

        payment = self._request("GET", f"/payments/{reference}")
        status = payment.get("status", "")
        logger.info(f"Razorpay verify [{order.id}]: {reference} status={status}")

        if not order.provider_order_id or payment.get("order_id") != order.provider_order_id:
            logger.warning(f"Razorpay payment {reference} is for {payment.get('order_id')}, not order #{order.id}")
            return GatewayVerifyResult(
                success=False, status=status, reference=reference, error_message="Payment does not match order",
            )

        if status != "captured":
            return GatewayVerifyResult(
                success=False,
                status=status,
                reference=reference,
                terminal=status in TERMINAL_FAILURE_STATES,
                error_message="Payment not captured",
            )

        expected = to_minor_units(order.total)
        if payment.get("amount") != expected:
            logger.warning(
                f"Razorpay amount mismatch on order #{order.id}: expected {expected}, received {payment.get('amount')}"
            )
            return GatewayVerifyResult(
                success=False, status=status, reference=reference, error_message="Amount mismatch",
            )

        return GatewayVerifyResult(success=True, status=status, reference=reference)

    # ------------------------------------------
    # Signatures
    # ------------------------------------------

    def verify_checkout_signature(self, provider_order_id: str, payment_id: str, signature: str) -> bool:
        """Hosted-checkout callback: HMAC-SHA256(key_secret, "order_id|payment_id")."""
        return verify_hmac_signature(self.config.key_secret, f"{provider_order_id}|{payment_id}", signature)

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """Webhook: HMAC-SHA256(webhook_secret, raw body)."""
        return verify_hmac_signature(self.config.webhook_secret, raw_body, signature)


register_gateway(RazorpayGateway(razorpay_config()))
