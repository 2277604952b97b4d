"""Tests for shipment orchestration and the Delhivery client."""

import json

import httpx
import pytest

from config.settings import CarrierConfig
from common.exceptions import (
    ConfigurationError, ConflictError, ExternalServiceError, NotFoundError, UnpaidOrderError, ValidationError,
)
from modules.order import state_machine
from modules.order.models import OrderStatusLog
from modules.shipment.carrier import CarrierResponse, DelhiveryClient, LabelDocument, ShipmentRequest, extract_awb
from modules.shipment.service import ShipmentService

PDF = b"%PDF-1.4 label"


class FakeCarrier:
    name = "Delhivery"

    def __init__(self, create=None, cancel=None, label=None):
        self.create_response = create or CarrierResponse(
            ok=True, status=200, body={"success": True, "packages": [{"waybill": "AWB123", "status": "Success"}]},
        )
        self.cancel_response = cancel or CarrierResponse(ok=True, status=200, body={"status": True})
        self.label = label
        self.requests = []
        self.cancelled = []
        self.downloaded = []

    def create_shipment(self, req):
        self.requests.append(req)
        if isinstance(self.create_response, Exception):
            raise self.create_response
        return self.create_response

    def cancel_shipment(self, awb):
        self.cancelled.append(awb)
        return self.cancel_response

    def fetch_label(self, awb):
        return self.label

    def download(self, url):
        self.downloaded.append(url)
        return LabelDocument(PDF, source_url=url)


@pytest.fixture
def paid_order(db, make_product, place_order):
    order = place_order(make_product(price="799"), payment_method="razorpay")
    state_machine.confirm_payment(db, order, "pay_1", "webhook")
    db.commit()
    return order


class TestCreateShipment:
    def test_creates_and_records_awb(self, db, paid_order):
        carrier = FakeCarrier()
        result = ShipmentService(carrier).create_shipment(db, paid_order.id)
        db.commit()

        assert result["created"] is True
        assert paid_order.awb == "AWB123"
        assert paid_order.courier == "Delhivery"
        assert paid_order.shipment_status == "Pending"
        assert paid_order.shipment_created_at is not None
        assert carrier.requests[0].payment_mode == "Prepaid"
        assert carrier.requests[0].pin == "560001"

    def test_second_call_skips_carrier(self, db, paid_order):
        carrier = FakeCarrier()
        service = ShipmentService(carrier)
        service.create_shipment(db, paid_order.id)
        db.commit()

        result = service.create_shipment(db, paid_order.id)
        assert result["created"] is False
        assert result["awb"] == "AWB123"
        assert len(carrier.requests) == 1

    def test_unpaid_prepaid_order(self, db, make_product, place_order):
        order = place_order(make_product(), payment_method="stripe")
        carrier = FakeCarrier()
        with pytest.raises(UnpaidOrderError):
            ShipmentService(carrier).create_shipment(db, order.id)
        assert carrier.requests == []

    def test_cod_ships_unpaid_with_cod_amount(self, db, make_product, place_order):
        order = place_order(make_product(price="799"), payment_method="cod")
        carrier = FakeCarrier()
        ShipmentService(carrier).create_shipment(db, order.id)

        request = carrier.requests[0]
        assert request.payment_mode == "COD"
        assert str(request.cod_amount) == "898.00"

    def test_cancelled_order(self, db, paid_order):
        state_machine.cancel(db, paid_order, "oops", "admin")
        db.commit()
        with pytest.raises(ConflictError):
            ShipmentService(FakeCarrier()).create_shipment(db, paid_order.id)

    def test_missing_phone_recorded(self, db, make_product, place_order):
        order = place_order(make_product(), payment_method="cod", phone="")
        order.customer_phone = None
        db.commit()

        carrier = FakeCarrier()
        with pytest.raises(ValidationError):
            ShipmentService(carrier).create_shipment(db, order.id)
        db.commit()

        assert order.carrier_response == {"error": "Invalid shipping address"}
        assert order.shipment_created_at is None
        assert carrier.requests == []

    def test_carrier_rejection_persists_body(self, db, paid_order):
        body = {"success": False, "rmk": "Pincode not serviceable"}
        carrier = FakeCarrier(create=CarrierResponse(ok=False, status=200, body=body))
        with pytest.raises(ExternalServiceError) as exc:
            ShipmentService(carrier).create_shipment(db, paid_order.id)
        db.commit()

        assert exc.value.details == body
        assert paid_order.carrier_response == body
        assert paid_order.shipment_created_at is None

    def test_transport_error_persists_message(self, db, paid_order):
        carrier = FakeCarrier(create=ExternalServiceError("Shipping carrier did not respond. Please try again."))
        with pytest.raises(ExternalServiceError):
            ShipmentService(carrier).create_shipment(db, paid_order.id)
        assert paid_order.carrier_response == {"error": "Shipping carrier did not respond. Please try again."}

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            ShipmentService(FakeCarrier()).create_shipment(db, 999)


class TestCancelShipment:
    def test_cancel_by_awb_merges_response(self, db, paid_order):
        carrier = FakeCarrier()
        service = ShipmentService(carrier)
        service.create_shipment(db, paid_order.id)
        db.commit()

        result = service.cancel_shipment(db, awb="AWB123")
        db.commit()

        assert result["cancelled"] is True
        assert paid_order.shipment_status == "cancelled"
        assert paid_order.shipment_cancelled_at is not None
        assert paid_order.carrier_response["cancel"] == {"status": True}
        assert paid_order.carrier_response["packages"][0]["waybill"] == "AWB123"

    def test_cancel_by_order_id(self, db, paid_order):
        carrier = FakeCarrier()
        service = ShipmentService(carrier)
        service.create_shipment(db, paid_order.id)
        service.cancel_shipment(db, order_id=paid_order.id)
        assert carrier.cancelled == ["AWB123"]

    def test_failed_cancel_leaves_order(self, db, paid_order):
        carrier = FakeCarrier(cancel=CarrierResponse(ok=False, status=502, body={"error": "Failed"}))
        service = ShipmentService(carrier)
        service.create_shipment(db, paid_order.id)
        db.commit()

        with pytest.raises(ExternalServiceError):
            service.cancel_shipment(db, awb="AWB123")
        assert paid_order.shipment_status == "Pending"
        assert paid_order.shipment_cancelled_at is None

    def test_order_without_awb(self, db, paid_order):
        with pytest.raises(NotFoundError):
            ShipmentService(FakeCarrier()).cancel_shipment(db, order_id=paid_order.id)

    def test_reset_after_cancel_allows_retry(self, db, paid_order):
        carrier = FakeCarrier()
        service = ShipmentService(carrier)
        service.create_shipment(db, paid_order.id)
        with pytest.raises(ConflictError):
            service.reset_shipment(db, paid_order.id)

        service.cancel_shipment(db, awb="AWB123")
        service.reset_shipment(db, paid_order.id)
        assert paid_order.shipment_status == "Pending Retry"
        assert paid_order.awb is None

        service.create_shipment(db, paid_order.id)
        assert len(carrier.requests) == 2
        db.commit()
        fields = [log.field for log in db.query(OrderStatusLog).filter(OrderStatusLog.order_id == paid_order.id)]
        assert fields.count("shipment_status") == 4


class TestLabel:
    def test_label_from_carrier_stores_url(self, db, paid_order):
        carrier = FakeCarrier(label=LabelDocument(PDF, source_url="https://labels.example/AWB123.pdf"))
        service = ShipmentService(carrier)
        service.create_shipment(db, paid_order.id)

        document = service.get_label(db, "AWB123")
        assert document.content.startswith(b"%PDF")
        assert paid_order.label_url == "https://labels.example/AWB123.pdf"

    def test_falls_back_to_stored_url(self, db, paid_order):
        carrier = FakeCarrier(label=None)
        service = ShipmentService(carrier)
        service.create_shipment(db, paid_order.id)
        paid_order.label_url = "https://labels.example/old.pdf"

        document = service.get_label(db, "AWB123")
        assert document.content == PDF
        assert carrier.downloaded == ["https://labels.example/old.pdf"]

    def test_no_label_anywhere(self, db, paid_order):
        with pytest.raises(NotFoundError):
            ShipmentService(FakeCarrier(label=None)).get_label(db, "AWB404")


class TestExtractAwb:
    @pytest.mark.parametrize("body,expected", [
        ({"data": {"shipments": [{"waybill": "A1"}]}}, "A1"),
        ({"response": {"waybill": "A2"}}, "A2"),
        ({"result": {"waybill": "A3"}}, "A3"),
        ({"data": {"lrn": "A4"}}, "A4"),
        ({"packages": [{"waybill": 12345}]}, "12345"),
        ({"packages": []}, None),
        ({"success": True}, None),
        (None, None),
    ])
    def test_strategies(self, body, expected):
        assert extract_awb(body) == expected

    def test_first_strategy_wins(self):
        body = {"data": {"shipments": [{"waybill": "FIRST"}]}, "packages": [{"waybill": "LAST"}]}
        assert extract_awb(body) == "FIRST"


class FakeHttpResponse:
    def __init__(self, status_code=200, payload=None, content=b"", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = content.decode("latin-1") if content else json.dumps(payload)
        self.headers = headers or {}

    @property
    def is_success(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class TestDelhiveryClient:
    @pytest.fixture
    def client(self):
        return DelhiveryClient(CarrierConfig(token="dl_token", env="staging", pickup_name="VERDANT_WH"))

    def shipment_request(self, **kwargs):
        params = dict(
            order_id=7, customer_name="Priya", customer_phone="9876543210", address_line1="12 MG Road",
            city="Bengaluru", state="Karnataka", pin="560001", items=[("Monstera", 2)],
        )
        params.update(kwargs)
        return ShipmentRequest(**params)

    def test_create_posts_form_payload(self, client, monkeypatch):
        seen = {}

        def fake_post(url, headers=None, data=None, timeout=None):
            seen.update(url=url, headers=headers, data=data)
            return FakeHttpResponse(200, {"success": True, "packages": [{"waybill": "AWB9"}]})

        monkeypatch.setattr(httpx, "post", fake_post)
        response = client.create_shipment(self.shipment_request())

        assert response.ok is True
        assert seen["url"] == "https://staging-express.delhivery.com/api/cmu/create.json"
        assert seen["headers"]["Authorization"] == "Token dl_token"
        assert seen["data"]["format"] == "json"
        payload = json.loads(seen["data"]["data"])
        assert payload["pickup_location"]["name"] == "VERDANT_WH"
        assert payload["shipments"][0]["order"] == "7"
        assert payload["shipments"][0]["quantity"] == "2"

    def test_success_false_is_not_ok(self, client, monkeypatch):
        monkeypatch.setattr(httpx, "post", lambda url, **kw: FakeHttpResponse(200, {"success": False, "rmk": "bad pin"}))
        response = client.create_shipment(self.shipment_request())
        assert response.ok is False
        assert response.body["rmk"] == "bad pin"

    def test_timeout(self, client, monkeypatch):
        def slow(url, **kw):
            raise httpx.ConnectTimeout("timeout")

        monkeypatch.setattr(httpx, "post", slow)
        with pytest.raises(ExternalServiceError):
            client.create_shipment(self.shipment_request())

    def test_cancel_tries_endpoints_in_order(self, client, monkeypatch):
        urls = []

        def fake_post(url, **kw):
            urls.append(url)
            if url.endswith("/api/cmu/cancel_waybill.json"):
                return FakeHttpResponse(200, {"status": True})
            return FakeHttpResponse(404, {"error": "not found"})

        monkeypatch.setattr(httpx, "post", fake_post)
        response = client.cancel_shipment("AWB9")

        assert response.ok is True
        assert len(urls) == 3

    def test_cancel_all_endpoints_fail(self, client, monkeypatch):
        monkeypatch.setattr(httpx, "post", lambda url, **kw: FakeHttpResponse(500, {"error": "boom"}))
        assert client.cancel_shipment("AWB9").ok is False

    def test_packing_slip_must_be_pdf(self, client, monkeypatch):
        monkeypatch.setattr(httpx, "post", lambda url, **kw: FakeHttpResponse(500, {"error": "no"}))

        def fake_get(url, **kw):
            if "packing_slip" in url:
                return FakeHttpResponse(200, content=b"<html>not a label</html>")
            return FakeHttpResponse(404, {"error": "no"})

        monkeypatch.setattr(httpx, "get", fake_get)
        assert client.fetch_label("AWB9") is None

    def test_json_print_url_is_downloaded(self, client, monkeypatch):
        monkeypatch.setattr(httpx, "post", lambda url, **kw: FakeHttpResponse(500, {"error": "no"}))

        def fake_get(url, **kw):
            if "/waybill/api/print/json/" in url:
                return FakeHttpResponse(200, {"data": {"url": "https://labels.example/AWB9.pdf"}})
            if url == "https://labels.example/AWB9.pdf":
                return FakeHttpResponse(200, content=PDF, headers={"content-type": "application/pdf"})
            return FakeHttpResponse(404, {"error": "no"})

        monkeypatch.setattr(httpx, "get", fake_get)
        document = client.fetch_label("AWB9")
        assert document.content == PDF
        assert document.source_url == "https://labels.example/AWB9.pdf"

    def test_missing_token(self):
        with pytest.raises(ConfigurationError):
            DelhiveryClient(CarrierConfig()).create_shipment(self.shipment_request())
