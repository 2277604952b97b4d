"""
Order Routes - Customer Facing
================================
Place an order, list/view own orders, cancel.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from config.settings import CART_COOKIE_NAME
from common.exceptions import NotFoundError
from common.security import create_order_token, get_cookie_kwargs, CART_TOKEN_EXPIRE_DAYS
from modules.auth.deps import get_current_user, require_login
from modules.cart.service import cart_service
from modules.order.service import order_service

router = APIRouter(prefix="/api/orders", tags=["orders"])


# ==========================================
# Schemas
# ==========================================

class OrderLineRequest(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int


class CreateOrderRequest(BaseModel):
    items: List[OrderLineRequest]
    shipping_address: Dict[str, Any]
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_email: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=30)
    payment_method: str
    coupon_code: Optional[str] = Field(None, max_length=50)
    subtotal: Decimal
    total: Decimal


class CancelOrderRequest(BaseModel):
    reason: str = Field("", max_length=500)


# ==========================================
# ✅ Place order
# ==========================================

@router.post("")
async def create_order(
    body: CreateOrderRequest,
    request: Request,
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    order = order_service.create_order(
        db,
        lines=[line.model_dump() for line in body.items],
        shipping_address=body.shipping_address,
        contact={
            "name": body.customer_name,
            "email": body.customer_email or (me.email if me else None),
            "phone": body.customer_phone,
        },
        payment_method=body.payment_method,
        client_totals={"subtotal": body.subtotal, "total": body.total},
        coupon_code=body.coupon_code,
        user_id=me.id if me else None,
    )

    # Checkout complete: the cart (and its coupon) starts over
    store = cart_service.store_for(db, me, request.cookies.get(CART_COOKIE_NAME))
    cart_service.clear(store)
    db.commit()

    payload = {"order": order.to_dict()}
    if order.user_id is None:
        payload["payment_token"] = create_order_token(order.id)
    response = JSONResponse(payload, status_code=201)
    if store.is_anonymous:
        response.set_cookie(
            CART_COOKIE_NAME, store.to_token(),
            **get_cookie_kwargs(max_age_minutes=CART_TOKEN_EXPIRE_DAYS * 24 * 60),
        )
    return response


# ==========================================
# 📋 My orders
# ==========================================

@router.get("")
async def my_orders(
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    orders = order_service.get_user_orders(db, me.id)
    return JSONResponse({"orders": [o.to_dict(include_items=False) for o in orders]})


@router.get("/{order_id}")
async def order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    order = order_service.get_order_by_id(db, order_id)
    if not order or (order.user_id != me.id and not me.is_admin):
        raise NotFoundError("Order not found")
    return JSONResponse({"order": order.to_dict()})


# ==========================================
# ❌ Cancel
# ==========================================

@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    body: CancelOrderRequest,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    order = order_service.cancel_order(db, order_id, me.id, body.reason.strip())
    db.commit()
    return JSONResponse({"order": order.to_dict(), "message": f"Order #{order_id} cancelled"})
