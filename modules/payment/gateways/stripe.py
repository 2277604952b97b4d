"""
Stripe Gateway
===============
REST, form-encoded, Bearer secret key. Synchronous confirm: the
PaymentIntent is created and confirmed in one call with the configured
payment method; verification retrieves the intent.
"""

import httpx
import logging
from typing import Optional

from config.settings import StripeConfig, stripe_config
from common.exceptions import ConfigurationError, ExternalServiceError
from common.helpers import to_minor_units
from modules.payment.gateways import (
    GatewayPaymentRequest, GatewayCreateResult, GatewayVerifyResult, register_gateway,
)

logger = logging.getLogger("verdant.gateway.stripe")

STRIPE_API_BASE = "https://api.stripe.com/v1"

# Intent states that can never turn into a successful charge
TERMINAL_FAILURE_STATES = {"canceled"}


class StripeGateway:
    name = "stripe"
    label = "Card (Stripe)"

    def __init__(self, config: Optional[StripeConfig] = None):
        self.config = config or StripeConfig()

    def _headers(self, idempotency_key: Optional[str] = None) -> dict:
        headers = {"Authorization": f"Bearer {self.config.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _ensure_configured(self):
        if not self.config.is_configured:
            raise ConfigurationError("Card payments are not available right now.")

    def _request(self, method: str, path: str, idempotency_key: Optional[str] = None, **kwargs) -> dict:
        """
        Call the Stripe API; errors and timeouts become ExternalServiceError.
        Provider error text stays in the log and `details`, never in the message.
        """
        url = f"{STRIPE_API_BASE}{path}"
        headers = self._headers(idempotency_key)
        try:
            if method == "GET":
                resp = httpx.get(url, headers=headers, timeout=self.config.timeout, **kwargs)
            else:
                resp = httpx.post(url, headers=headers, timeout=self.config.timeout, **kwargs)
        except httpx.TimeoutException:
            logger.warning(f"Stripe {method} {path}: timeout")
            raise ExternalServiceError("Payment provider did not respond. Please try again.")
        except httpx.HTTPError as e:
            logger.error(f"Stripe {method} {path} failed: {e}")
            raise ExternalServiceError("Could not reach the payment provider. Please try again.")

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code >= 400:
            error = (data.get("error") or {}) if isinstance(data, dict) else {}
            logger.error(
                f"Stripe {method} {path}: HTTP {resp.status_code} {error.get('type')} "
                f"{error.get('code')}: {error.get('message')}"
            )
            raise ExternalServiceError(
                "The payment could not be processed. Please try again.",
                details={"status": resp.status_code, "code": error.get("code"), "message": error.get("message")},
            )
        return data

    # ------------------------------------------
    # Customer
    # ------------------------------------------

    def _ensure_customer(self, email: str, name: str = "") -> Optional[str]:
        if not email:
            return None
        found = self._request("GET", "/customers", params={"email": email, "limit": 1})
        if found.get("data"):
            return found["data"][0]["id"]

        payload = {"email": email}
        if name:
            payload["name"] = name
        created = self._request("POST", "/customers", data=payload)
        logger.info(f"Stripe customer created: {created.get('id')}")
        return created.get("id")

    # ------------------------------------------
    # Create (+ confirm)
    # ------------------------------------------

    def _result_from_intent(self, intent: dict, req: GatewayPaymentRequest) -> GatewayCreateResult:
        return GatewayCreateResult(
            reference=intent["id"],
            amount_minor=int(intent.get("amount", req.amount_minor)),
            currency=intent.get("currency", self.config.currency),
            client_secret=intent.get("client_secret"),
            status=intent.get("status"),
        )

    def create_payment(self, req: GatewayPaymentRequest) -> GatewayCreateResult:
        """
        Create and confirm a PaymentIntent. A retry for an order that already
        has a live intent returns that intent; a new one is only created when
        the earlier one was cancelled or is for another amount.
        """
        self._ensure_configured()

        if req.existing_reference:
            intent = self._request("GET", f"/payment_intents/{req.existing_reference}")
            if intent.get("status") not in TERMINAL_FAILURE_STATES and intent.get("amount") == req.amount_minor:
                logger.info(f"Stripe intent [{req.order_id}]: reusing {intent.get('id')} status={intent.get('status')}")
                return self._result_from_intent(intent, req)

        customer_id = self._ensure_customer(req.customer_email, req.customer_name)

        payload = {
            "amount": req.amount_minor,
            "currency": self.config.currency,
            "payment_method": self.config.payment_method,
            "capture_method": "automatic",
            "confirm": "true",
            "automatic_payment_methods[enabled]": "true",
            "automatic_payment_methods[allow_redirects]": "never",
            "metadata[order_id]": str(req.order_id),
            "description": req.description,
        }
        if customer_id:
            payload["customer"] = customer_id
        if req.customer_email:
            payload["metadata[customer_email]"] = req.customer_email

        intent = self._request(
            "POST", "/payment_intents", data=payload,
            idempotency_key=f"verdant-order-{req.order_id}-{req.existing_reference or 'first'}",
        )
        logger.info(f"Stripe intent [{req.order_id}]: {intent.get('id')} status={intent.get('status')}")

        if intent.get("status") != "succeeded":
            logger.warning(f"Stripe intent {intent.get('id')} not succeeded after confirm: {intent.get('status')}")

        return self._result_from_intent(intent, req)

    # ------------------------------------------
    # Verify
    # ------------------------------------------

    def verify_payment(self, reference: str, order) -> GatewayVerifyResult:
        """Succeeded, full amount received, and issued for this order."""
        self._ensure_configured()

        intent = self._request("GET", f"/payment_intents/{reference}")
        status = intent.get("status", "")
        logger.info(f"Stripe verify [{order.id}]: {reference} status={status}")

        if status != "succeeded":
            return GatewayVerifyResult(
                success=False,
                status=status,
                reference=reference,
                terminal=status in TERMINAL_FAILURE_STATES,
                error_message="Payment not successful",
            )

        expected = to_minor_units(order.total)
        received = intent.get("amount_received")
        if received != expected:
            logger.warning(f"Stripe amount mismatch on order #{order.id}: expected {expected}, received {received}")
            return GatewayVerifyResult(
                success=False, status=status, reference=reference, error_message="Amount mismatch",
            )

        metadata_order = str((intent.get("metadata") or {}).get("order_id", ""))
        if metadata_order != str(order.id):
            logger.warning(f"Stripe intent {reference} belongs to order {metadata_order!r}, not #{order.id}")
            return GatewayVerifyResult(
                success=False, status=status, reference=reference, error_message="Payment does not match order",
            )

        return GatewayVerifyResult(success=True, status=status, reference=reference)


register_gateway(StripeGateway(stripe_config()))
