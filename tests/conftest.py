"""Pytest fixtures for the Verdant store tests."""

import os

# Settings are read at import time; point them at an in-memory database.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"
os.environ["FREE_SHIPPING_THRESHOLD"] = "999"
os.environ["FLAT_SHIPPING_FEE"] = "99"

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config.database import Base
from common.security import create_token
from modules.user.models import User
from modules.catalog.models import Product, ProductVariant
from modules.coupon.models import Coupon, CouponRedemption, DiscountType  # noqa: F401
from modules.cart.models import Cart, CartItem  # noqa: F401
from modules.order.models import Order, OrderItem, OrderStatusLog  # noqa: F401


ADDRESS = {
    "full_name": "Priya Sharma",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560001",
    "country": "India",
}


@pytest.fixture
def db():
    """A fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    def _make(email="priya@example.com", is_admin=False, full_name="Priya Sharma"):
        user = User(email=email, full_name=full_name, is_admin=is_admin, is_active=True)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Monstera", price="799", sale_price=None, variants=(), status="active"):
        slug = name.lower().replace(" ", "-")
        product = Product(
            name=name, slug=slug, base_price=Decimal(price),
            sale_price=Decimal(sale_price) if sale_price else None,
            status=status, stock_status="in_stock",
        )
        for variant_name, adjustment in variants:
            product.variants.append(ProductVariant(
                name=variant_name, price_adjustment=Decimal(adjustment), stock_quantity=10,
            ))
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", discount_type=DiscountType.PERCENTAGE.value, value="10", min_purchase="500", **kwargs):
        coupon = Coupon(
            code=code, discount_type=discount_type, discount_value=Decimal(value),
            min_purchase=Decimal(min_purchase), is_active=kwargs.pop("is_active", True), **kwargs,
        )
        db.add(coupon)
        db.commit()
        return coupon
    return _make


@pytest.fixture
def place_order(db):
    """Create an order through the factory with matching client totals."""
    from modules.order.service import order_service
    from modules.pricing.calculator import calculate_totals
    from modules.coupon.service import coupon_service

    def _place(product, quantity=1, payment_method="razorpay", coupon_code=None, user=None,
               address=None, phone="9876543210"):
        lines = [{"product_id": product.id, "quantity": quantity}]
        priced = order_service._price_lines(db, lines)
        applied = None
        if coupon_code:
            from modules.pricing.calculator import calculate_subtotal
            applied = coupon_service.ensure_valid(db, coupon_code, calculate_subtotal(priced))
        totals = calculate_totals(priced, applied, order_service.config)
        order = order_service.create_order(
            db,
            lines=lines,
            shipping_address=address if address is not None else dict(ADDRESS),
            contact={"name": "Priya Sharma", "email": "priya@example.com", "phone": phone},
            payment_method=payment_method,
            client_totals={"subtotal": str(totals.subtotal), "total": str(totals.total)},
            coupon_code=coupon_code,
            user_id=user.id if user else None,
        )
        db.commit()
        return order
    return _place


@pytest.fixture
def client(db):
    """TestClient bound to the test session."""
    from fastapi.testclient import TestClient
    from config.database import get_db
    from main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Sign the test client in as `user` via the auth_token cookie."""
    def _login(user):
        client.cookies.set("auth_token", create_token({"sub": str(user.id)}))
        return client
    return _login
