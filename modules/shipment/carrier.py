"""
Shipment Module - Delhivery Client
=====================================
Form-encoded REST (format=json&data=<json>) with `Token` auth.

create_shipment / cancel_shipment return a CarrierResponse (ok + parsed body)
so callers can persist whatever the carrier sent back. Transport failures
(timeouts, connection errors) raise ExternalServiceError.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from config.settings import CarrierConfig
from common.exceptions import ConfigurationError, ExternalServiceError

logger = logging.getLogger("verdant.shipment.delhivery")

CANCEL_ENDPOINTS = (
    "/api/cmu/cancel.json",
    "/api/cmu/cancel",
    "/api/cmu/cancel_waybill.json",
)


@dataclass
class ShipmentRequest:
    """Carrier-neutral description of one parcel."""
    order_id: int
    customer_name: str
    customer_phone: str
    address_line1: str
    city: str
    state: str
    pin: str
    address_line2: str = ""
    country: str = "India"
    items: List[Tuple[str, int]] = field(default_factory=list)   # (name, quantity)
    payment_mode: str = "Prepaid"                                # COD / Prepaid
    cod_amount: Decimal = Decimal("0")


@dataclass
class CarrierResponse:
    ok: bool
    status: int
    body: Dict[str, Any]


@dataclass
class LabelDocument:
    content: bytes
    content_type: str = "application/pdf"
    source_url: Optional[str] = None


# ==========================================
# AWB extraction (first non-empty wins)
# ==========================================

def _dig(body: Any, *path) -> Any:
    node = body
    for key in path:
        if isinstance(key, int):
            if not isinstance(node, list) or len(node) <= key:
                return None
        elif not isinstance(node, dict):
            return None
        node = node[key] if isinstance(key, int) else node.get(key)
    return node


AWB_STRATEGIES: List[Callable[[dict], Any]] = [
    lambda body: _dig(body, "data", "shipments", 0, "waybill"),
    lambda body: _dig(body, "response", "waybill"),
    lambda body: _dig(body, "result", "waybill"),
    lambda body: _dig(body, "data", "lrn"),
    lambda body: _dig(body, "packages", 0, "waybill"),
]


def extract_awb(body: Optional[dict]) -> Optional[str]:
    if not body:
        return None
    for strategy in AWB_STRATEGIES:
        value = strategy(body)
        if value:
            return str(value)
    return None


def _parse_body(resp) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {"raw": resp.text}
    return data if isinstance(data, dict) else {"data": data}


def _is_pdf(content: bytes) -> bool:
    return content[:4] == b"%PDF"


class DelhiveryClient:
    name = "Delhivery"

    def __init__(self, config: Optional[CarrierConfig] = None):
        self.config = config or CarrierConfig()

    def _ensure_configured(self):
        if not self.config.is_configured:
            raise ConfigurationError("Shipping carrier is not configured.")

    def _headers(self) -> dict:
        return {"Authorization": f"Token {self.config.token}"}

    def _form(self, payload: dict) -> dict:
        return {"format": "json", "data": json.dumps(payload)}

    def _pickup_location(self) -> dict:
        return {
            "name": self.config.pickup_name,
            "add": self.config.pickup_address,
            "country": "India",
            "pin": self.config.pickup_pin,
            "phone": self.config.pickup_phone,
            "city": self.config.pickup_city,
            "state": self.config.pickup_state,
        }

    def build_payload(self, req: ShipmentRequest) -> dict:
        is_cod = req.payment_mode == "COD"
        address = req.address_line1 + (f", {req.address_line2}" if req.address_line2 else "")
        shipment = {
            "order": str(req.order_id),
            "name": req.customer_name,
            "phone": req.customer_phone,
            "add": address,
            "city": req.city,
            "state": req.state,
            "pin": str(req.pin),
            "country": req.country or "India",
            "payment_mode": req.payment_mode,
            "cod_amount": str(req.cod_amount) if is_cod else "0",
            "quantity": str(sum(qty for _, qty in req.items) or 1),
            "sku": ", ".join(name for name, _ in req.items) or "ITEM",
            "seller_add": self.config.pickup_address,
            "return_name": self.config.pickup_name,
            "return_phone": self.config.pickup_phone,
            "actual_weight": "0.5",
        }
        return {"pickup_location": self._pickup_location(), "shipments": [shipment]}

    # ------------------------------------------
    # Create
    # ------------------------------------------

    def create_shipment(self, req: ShipmentRequest) -> CarrierResponse:
        self._ensure_configured()
        url = f"{self.config.api_base}/api/cmu/create.json"
        try:
            resp = httpx.post(
                url, headers=self._headers(), data=self._form(self.build_payload(req)),
                timeout=self.config.timeout,
            )
        except httpx.TimeoutException:
            logger.warning(f"Delhivery create [{req.order_id}]: timeout")
            raise ExternalServiceError("Shipping carrier did not respond. Please try again.")
        except httpx.HTTPError as e:
            logger.error(f"Delhivery create [{req.order_id}] failed: {e}")
            raise ExternalServiceError("Could not reach the shipping carrier. Please try again.")

        body = _parse_body(resp)
        ok = resp.is_success and body.get("success") is not False
        logger.info(f"Delhivery create [{req.order_id}]: HTTP {resp.status_code} ok={ok}")
        return CarrierResponse(ok=ok, status=resp.status_code, body=body)

    # ------------------------------------------
    # Cancel (endpoint variants, first OK wins)
    # ------------------------------------------

    def cancel_shipment(self, awb: str) -> CarrierResponse:
        self._ensure_configured()
        form = self._form({"waybill": awb, "cancellation": "true"})

        for path in CANCEL_ENDPOINTS:
            try:
                resp = httpx.post(
                    f"{self.config.api_base}{path}", headers=self._headers(), data=form,
                    timeout=self.config.timeout,
                )
            except httpx.HTTPError as e:
                logger.warning(f"Delhivery cancel {awb} via {path} failed: {e}")
                continue

            if resp.is_success:
                logger.info(f"Delhivery cancel {awb} via {path}: HTTP {resp.status_code}")
                return CarrierResponse(ok=True, status=resp.status_code, body=_parse_body(resp))
            logger.warning(f"Delhivery cancel {awb} via {path}: HTTP {resp.status_code}")

        return CarrierResponse(ok=False, status=502, body={"error": "Failed to cancel via known endpoints"})

    # ------------------------------------------
    # Label (PDF → JSON print URL → packing slip)
    # ------------------------------------------

    def fetch_label(self, awb: str) -> Optional[LabelDocument]:
        self._ensure_configured()
        base = self.config.api_base

        # 1) PDF endpoint
        try:
            resp = httpx.post(
                f"{base}/api/docket/generate_label_pdf", headers=self._headers(),
                data=self._form({"lr_numbers": [awb], "label_size": "A4"}), timeout=self.config.timeout,
            )
            if resp.is_success:
                return LabelDocument(resp.content, resp.headers.get("content-type") or "application/pdf")
            logger.warning(f"Delhivery PDF label {awb}: HTTP {resp.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Delhivery PDF label {awb} failed: {e}")

        # 2) JSON print endpoint → download URL
        try:
            resp = httpx.get(
                f"{base}/waybill/api/print/json/",
                params={"token": self.config.token, "waybill": awb}, timeout=self.config.timeout,
            )
            if resp.is_success:
                data = _parse_body(resp)
                url = _dig(data, "data", "url") or data.get("url") or data.get("label_url") or data.get("print_url")
                if url:
                    document = self.download(url)
                    if document:
                        return document
            else:
                logger.warning(f"Delhivery JSON label {awb}: HTTP {resp.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Delhivery JSON label {awb} failed: {e}")

        # 3) Packing slip (some accounts answer 200 with an HTML page)
        try:
            resp = httpx.get(
                f"{base}/api/p/packing_slip", headers=self._headers(),
                params={"wbns": awb, "pdf": "true"}, timeout=self.config.timeout,
            )
            if resp.is_success and _is_pdf(resp.content):
                return LabelDocument(resp.content, "application/pdf")
            logger.warning(f"Delhivery packing slip {awb}: HTTP {resp.status_code}, not a PDF")
        except httpx.HTTPError as e:
            logger.warning(f"Delhivery packing slip {awb} failed: {e}")

        return None

    def download(self, url: str) -> Optional[LabelDocument]:
        try:
            resp = httpx.get(url, timeout=self.config.timeout, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning(f"Label download {url} failed: {e}")
            return None
        if not resp.is_success:
            logger.warning(f"Label download {url}: HTTP {resp.status_code}")
            return None
        return LabelDocument(resp.content, resp.headers.get("content-type") or "application/pdf", source_url=url)
