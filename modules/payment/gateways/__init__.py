"""
Payment Gateway Abstraction
=============================
Each gateway implements create_payment() and verify_payment().
Gateways satisfy the PaymentGateway protocol (no shared base class) and
are looked up by payment method through the registry.
"""

import logging
from decimal import Decimal
from typing import Dict, Any, Optional, Protocol
from dataclasses import dataclass, field

logger = logging.getLogger("verdant.gateway")


@dataclass
class GatewayPaymentRequest:
    """Input for creating a payment."""
    order_id: int
    amount: Decimal
    amount_minor: int           # paise / cents
    description: str = ""
    customer_email: str = ""
    customer_name: str = ""
    customer_phone: str = ""
    existing_reference: Optional[str] = None   # provider object from an earlier attempt


@dataclass
class GatewayCreateResult:
    """Result of create_payment(). Provider failures raise instead."""
    reference: str                      # PaymentIntent id / provider order id
    amount_minor: int
    currency: str
    client_secret: Optional[str] = None
    public_key: Optional[str] = None    # key id for the hosted checkout
    status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "reference": self.reference,
            "amount": self.amount_minor,
            "currency": self.currency,
            "status": self.status,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        if self.public_key:
            data["key_id"] = self.public_key
        data.update(self.extra)
        return data


@dataclass
class GatewayVerifyResult:
    """
    Result of verify_payment().
    terminal=True on a failure means the payment can never succeed
    (declined/cancelled); otherwise it may still complete later.
    """
    success: bool
    status: str = ""
    reference: Optional[str] = None
    terminal: bool = False
    error_message: Optional[str] = None


class PaymentGateway(Protocol):
    name: str
    label: str

    def create_payment(self, req: GatewayPaymentRequest) -> GatewayCreateResult:
        ...

    def verify_payment(self, reference: str, order) -> GatewayVerifyResult:
        ...


# ── Registry ──

_GATEWAYS: Dict[str, PaymentGateway] = {}


def register_gateway(gw: PaymentGateway):
    _GATEWAYS[gw.name] = gw
    logger.debug(f"Registered payment gateway: {gw.name}")


def get_gateway(name: str) -> Optional[PaymentGateway]:
    return _GATEWAYS.get(name)

