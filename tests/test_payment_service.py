"""Tests for payment orchestration: create, verify, webhook."""

import json
from decimal import Decimal

import pytest

from config.settings import RazorpayConfig
from common.exceptions import ConflictError, NotFoundError, SecurityError
from common.security import create_order_token, hmac_sha256_hex
from modules.coupon.models import Coupon
from modules.order.models import OrderStatusLog
from modules.payment.gateways import GatewayCreateResult, GatewayVerifyResult
from modules.payment.gateways.razorpay import RazorpayGateway
from modules.payment.service import PaymentService

WEBHOOK_SECRET = "whsec_unit"


def guest_token(order):
    return create_order_token(order.id)


class FakeStripe:
    name = "stripe"
    label = "Fake card"

    def __init__(self, verify_result=None):
        self.created = []
        self.verified = []
        self.verify_result = verify_result or GatewayVerifyResult(success=True, status="succeeded")

    def create_payment(self, req):
        self.created.append(req)
        return GatewayCreateResult(
            reference=f"pi_{req.order_id}", amount_minor=req.amount_minor, currency="usd",
            client_secret="secret_123", status="succeeded",
        )

    def verify_payment(self, reference, order):
        self.verified.append(reference)
        result = self.verify_result
        if result.success and result.reference is None:
            return GatewayVerifyResult(success=True, status=result.status, reference=reference)
        return result


class FakeRazorpay(RazorpayGateway):
    """Real signature checks, no network."""

    def __init__(self):
        super().__init__(RazorpayConfig(key_id="rzp_key", key_secret="rzp_secret", webhook_secret=WEBHOOK_SECRET))

    def create_payment(self, req):
        return GatewayCreateResult(
            reference=f"order_RP{req.order_id}", amount_minor=req.amount_minor, currency="INR",
            public_key=self.config.key_id, status="created",
        )


@pytest.fixture
def stripe_gw():
    return FakeStripe()


@pytest.fixture
def service(stripe_gw):
    return PaymentService(gateways={"stripe": stripe_gw, "razorpay": FakeRazorpay()})


def webhook(event, order, amount_minor, payment_id="pay_1", notes=True):
    entity = {
        "id": payment_id,
        "amount": amount_minor,
        "status": "captured" if event == "payment.captured" else "failed",
        "order_id": order.provider_order_id,
        "notes": {"order_id": str(order.id)} if notes else {},
    }
    body = json.dumps({"event": event, "payload": {"payment": {"entity": entity}}}).encode()
    return body, hmac_sha256_hex(WEBHOOK_SECRET, body)


class TestCreatePayment:
    def test_stripe_uses_stored_total(self, db, service, stripe_gw, make_product, place_order):
        order = place_order(make_product(price="799"), payment_method="stripe")
        result = service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        assert stripe_gw.created[0].amount_minor == 89800
        assert result["reference"] == f"pi_{order.id}"
        assert result["client_secret"] == "secret_123"
        assert order.payment_ref == f"pi_{order.id}"

    def test_razorpay_stores_provider_order(self, db, service, make_product, place_order):
        order = place_order(make_product(price="799"), payment_method="razorpay")
        result = service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        assert order.provider_order_id == f"order_RP{order.id}"
        assert result["key_id"] == "rzp_key"
        assert result["amount"] == 89800
        assert result["currency"] == "INR"

    def test_cod_has_no_payment(self, db, service, make_product, place_order):
        order = place_order(make_product(), payment_method="cod")
        with pytest.raises(ConflictError):
            service.create_payment_intent(db, order.id, order_token=guest_token(order))

    def test_user_order_hidden_from_others(self, db, service, make_user, make_product, place_order):
        owner = make_user()
        stranger = make_user(email="other@example.com")
        order = place_order(make_product(), payment_method="stripe", user=owner)
        with pytest.raises(NotFoundError):
            service.create_payment_intent(db, order.id, stranger)

    def test_retry_hands_back_earlier_reference(self, db, service, stripe_gw, make_product, place_order):
        order = place_order(make_product(price="799"), payment_method="stripe")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()
        service.create_payment_intent(db, order.id, order_token=guest_token(order))

        assert stripe_gw.created[0].existing_reference is None
        assert stripe_gw.created[1].existing_reference == f"pi_{order.id}"

    def test_guest_order_needs_its_token(self, db, service, make_product, place_order):
        order = place_order(make_product(), payment_method="stripe")
        other = place_order(make_product(name="Peace Lily", price="349"), payment_method="stripe")

        with pytest.raises(NotFoundError):
            service.create_payment_intent(db, order.id)
        with pytest.raises(NotFoundError):
            service.create_payment_intent(db, order.id, order_token=guest_token(other))
        with pytest.raises(NotFoundError):
            service.verify_payment(db, order.id, "pi_abc", order_token="not-a-token")


class TestVerifyPayment:
    def test_success_confirms_and_redeems(self, db, service, make_product, make_coupon, place_order):
        make_coupon()
        order = place_order(make_product(price="799"), payment_method="stripe", coupon_code="SAVE10")

        result = service.verify_payment(db, order.id, "pi_abc", order_token=guest_token(order))
        db.commit()

        assert result["success"] is True
        assert order.payment_status == "paid"
        assert order.status == "processing"
        assert order.payment_ref == "pi_abc"
        assert db.query(Coupon).filter(Coupon.code == "SAVE10").one().used_count == 1

    def test_double_verification_does_not_call_gateway(self, db, service, stripe_gw, make_product, place_order):
        order = place_order(make_product(), payment_method="stripe")
        service.verify_payment(db, order.id, "pi_abc", order_token=guest_token(order))
        db.commit()

        result = service.verify_payment(db, order.id, "pi_abc", order_token=guest_token(order))
        assert result["success"] is True
        assert stripe_gw.verified == ["pi_abc"]

    def test_pending_payment_leaves_order_unchanged(self, db, make_product, place_order):
        gw = FakeStripe(GatewayVerifyResult(success=False, status="processing", error_message="Payment not successful"))
        service = PaymentService(gateways={"stripe": gw})
        order = place_order(make_product(), payment_method="stripe")

        result = service.verify_payment(db, order.id, "pi_abc", order_token=guest_token(order))
        assert result["success"] is False
        assert order.payment_status == "pending"
        assert order.status == "pending"

    def test_terminal_failure_marks_failed(self, db, make_product, place_order):
        gw = FakeStripe(GatewayVerifyResult(success=False, status="canceled", terminal=True, error_message="Declined"))
        service = PaymentService(gateways={"stripe": gw})
        order = place_order(make_product(), payment_method="stripe")

        service.verify_payment(db, order.id, "pi_abc", order_token=guest_token(order))
        assert order.payment_status == "failed"
        assert order.status == "pending"


class TestRazorpayWebhook:
    def test_captured_confirms_order(self, db, service, make_product, make_coupon, place_order):
        make_coupon()
        order = place_order(make_product(price="799"), payment_method="razorpay", coupon_code="SAVE10")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        body, signature = webhook("payment.captured", order, 81810)
        result = service.handle_razorpay_webhook(db, body, signature)
        db.commit()

        assert result["handled"] is True
        assert result["changed"] is True
        assert order.payment_status == "paid"
        assert order.status == "processing"
        assert order.payment_ref == "pay_1"
        assert db.query(Coupon).filter(Coupon.code == "SAVE10").one().used_count == 1

    def test_duplicate_webhook_is_noop(self, db, service, make_product, make_coupon, place_order):
        make_coupon()
        order = place_order(make_product(price="799"), payment_method="razorpay", coupon_code="SAVE10")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        body, signature = webhook("payment.captured", order, 81810)
        service.handle_razorpay_webhook(db, body, signature)
        db.commit()
        logs = db.query(OrderStatusLog).count()

        result = service.handle_razorpay_webhook(db, body, signature)
        db.commit()

        assert result["changed"] is False
        assert db.query(OrderStatusLog).count() == logs
        assert db.query(Coupon).filter(Coupon.code == "SAVE10").one().used_count == 1

    def test_bad_signature_writes_nothing(self, db, service, make_product, place_order):
        order = place_order(make_product(), payment_method="razorpay")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        body, _ = webhook("payment.captured", order, 89800)
        with pytest.raises(SecurityError):
            service.handle_razorpay_webhook(db, body, "0" * 64)
        db.rollback()

        db.refresh(order)
        assert order.payment_status == "pending"

    def test_correlates_by_provider_order_id(self, db, service, make_product, place_order):
        order = place_order(make_product(price="799"), payment_method="razorpay")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        body, signature = webhook("payment.captured", order, 89800, notes=False)
        service.handle_razorpay_webhook(db, body, signature)
        assert order.payment_status == "paid"

    def test_amount_mismatch_not_confirmed(self, db, service, make_product, place_order):
        order = place_order(make_product(price="799"), payment_method="razorpay")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        body, signature = webhook("payment.captured", order, 100)
        result = service.handle_razorpay_webhook(db, body, signature)
        assert result["handled"] is False
        assert order.payment_status == "pending"

    def test_non_ascii_signature_is_rejected(self, db, service, make_product, place_order):
        order = place_order(make_product(), payment_method="razorpay")
        body, _ = webhook("payment.captured", order, 89800)
        with pytest.raises(SecurityError):
            service.handle_razorpay_webhook(db, body, "\xe9abc")
        with pytest.raises(SecurityError):
            service.verify_checkout_callback(db, "order_x", "pay_1", "\xe9" * 64)

    def test_failed_after_paid_does_not_regress(self, db, service, make_product, place_order):
        order = place_order(make_product(price="799"), payment_method="razorpay")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        body, signature = webhook("payment.captured", order, 89800)
        service.handle_razorpay_webhook(db, body, signature)
        body, signature = webhook("payment.failed", order, 89800, payment_id="pay_2")
        result = service.handle_razorpay_webhook(db, body, signature)

        assert result["changed"] is False
        assert order.payment_status == "paid"

    def test_unknown_order(self, db, service, make_product, place_order):
        order = place_order(make_product(), payment_method="razorpay")
        body = json.dumps({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_x", "amount": 1, "order_id": "order_missing", "notes": {}}}},
        }).encode()
        with pytest.raises(NotFoundError):
            service.handle_razorpay_webhook(db, body, hmac_sha256_hex(WEBHOOK_SECRET, body))
        assert order.payment_status == "pending"


class TestCheckoutCallback:
    def test_valid_signature_is_advisory(self, db, service, make_product, place_order):
        order = place_order(make_product(), payment_method="razorpay")
        service.create_payment_intent(db, order.id, order_token=guest_token(order))
        db.commit()

        signature = hmac_sha256_hex("rzp_secret", f"{order.provider_order_id}|pay_1")
        result = service.verify_checkout_callback(db, order.provider_order_id, "pay_1", signature)
        assert result["verified"] is True
        assert order.payment_status == "pending"

    def test_bad_signature(self, db, service):
        with pytest.raises(SecurityError):
            service.verify_checkout_callback(db, "order_x", "pay_1", "deadbeef")
