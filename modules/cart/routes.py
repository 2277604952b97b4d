"""
Cart Routes
=============
Cart view and line/coupon updates (JSON API). Anonymous visitors carry their
cart in a signed cookie; signed-in users work on their persisted cart.
"""

from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from config.settings import CART_COOKIE_NAME
from common.security import get_cookie_kwargs, CART_TOKEN_EXPIRE_DAYS
from modules.auth.deps import get_current_user, require_login
from modules.cart.service import cart_service, AnonymousCart

router = APIRouter(prefix="/api/cart", tags=["cart"])


# ==========================================
# Schemas
# ==========================================

class CartItemRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    variant_id: Optional[int] = Field(None, gt=0)
    quantity: int = Field(1)


class CartLineRef(BaseModel):
    product_id: int = Field(..., gt=0)
    variant_id: Optional[int] = Field(None, gt=0)


class CouponRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


def _store(request: Request, db: Session, me):
    return cart_service.store_for(db, me, request.cookies.get(CART_COOKIE_NAME))


def _cart_response(db: Session, store, **extra) -> JSONResponse:
    """Commit persisted changes, or re-sign the cookie for an anonymous cart."""
    payload = cart_service.to_response(db, store)
    payload.update(extra)
    if store.is_anonymous:
        response = JSONResponse(payload)
        response.set_cookie(
            CART_COOKIE_NAME, store.to_token(),
            **get_cookie_kwargs(max_age_minutes=CART_TOKEN_EXPIRE_DAYS * 24 * 60),
        )
        return response
    db.commit()
    return JSONResponse(payload)


# ==========================================
# 🛒 View Cart
# ==========================================

@router.get("")
async def view_cart(
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    store = _store(request, db, me)
    cart_service.refresh_coupon(db, store)
    return _cart_response(db, store)


# ==========================================
# ➕➖ Lines
# ==========================================

@router.post("/items")
async def add_item(
    body: CartItemRequest,
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    store = _store(request, db, me)
    cart_service.add_item(db, store, body.product_id, body.variant_id, body.quantity)
    return _cart_response(db, store)


@router.patch("/items")
async def update_item(
    body: CartItemRequest,
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    """Set quantity; zero or less removes the line."""
    store = _store(request, db, me)
    cart_service.update_quantity(db, store, body.product_id, body.variant_id, body.quantity)
    return _cart_response(db, store)


@router.delete("/items")
async def remove_item(
    body: CartLineRef,
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    store = _store(request, db, me)
    cart_service.remove_item(db, store, body.product_id, body.variant_id)
    return _cart_response(db, store)


@router.delete("")
async def clear_cart(
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    store = _store(request, db, me)
    cart_service.clear(store)
    return _cart_response(db, store)


# ==========================================
# 🔀 Merge (after sign-in)
# ==========================================

@router.post("/merge")
async def merge_cart(
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    anonymous = AnonymousCart.from_token(request.cookies.get(CART_COOKIE_NAME))
    persisted = cart_service.merge(db, anonymous, me.id)
    payload = cart_service.to_response(db, persisted)
    db.commit()

    response = JSONResponse(payload)
    response.delete_cookie(CART_COOKIE_NAME)
    return response


# ==========================================
# 🎟️ Coupon
# ==========================================

@router.post("/coupon")
async def apply_coupon(
    body: CouponRequest,
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    store = _store(request, db, me)
    applied = cart_service.apply_coupon(db, store, body.code)
    return _cart_response(db, store, message=f"Coupon {applied.code} applied")


@router.delete("/coupon")
async def remove_coupon(
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    store = _store(request, db, me)
    cart_service.remove_coupon(store)
    return _cart_response(db, store)
