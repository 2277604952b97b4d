"""
Verdant Store - Application Entry Point
=========================================
FastAPI app initialization, exception handling, and router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from config.database import Base, engine
from common.exceptions import StoreError, CouponValidationError, SecurityError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("verdant.app")


# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.user.models import User  # noqa: F401
from modules.catalog.models import Product, ProductVariant  # noqa: F401
from modules.coupon.models import Coupon, CouponRedemption  # noqa: F401
from modules.cart.models import Cart, CartItem  # noqa: F401
from modules.order.models import Order, OrderItem, OrderStatusLog  # noqa: F401

# ==========================================
# Import routers
# ==========================================
from modules.cart.routes import router as cart_router
from modules.coupon.routes import router as coupon_router
from modules.order.routes import router as order_router
from modules.order.admin_routes import router as order_admin_router
from modules.payment.routes import router as payment_router
from modules.shipment.routes import router as shipment_admin_router


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)
    logger.info("Verdant store started")
    yield


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Verdant Store",
    description="Storefront order & payment API",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handler: business errors → JSON
# ==========================================
async def store_exception_handler(request: Request, exc: StoreError):
    if isinstance(exc, SecurityError):
        logger.warning(f"Rejected request to {request.url.path}")
        return JSONResponse({"detail": "Invalid request"}, status_code=exc.status_code)

    body = {"detail": exc.message}
    if isinstance(exc, CouponValidationError):
        body["reason"] = exc.reason
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(body, status_code=exc.status_code)


app.add_exception_handler(StoreError, store_exception_handler)


# ==========================================
# Register Routers
# ==========================================
app.include_router(cart_router)
app.include_router(coupon_router)
app.include_router(order_router)
app.include_router(order_admin_router)
app.include_router(payment_router)
app.include_router(shipment_admin_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}
