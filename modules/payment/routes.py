"""
Payment Routes
================
Create provider payment, verify by reference, Razorpay callback + webhook.
Guest orders authorize payment calls with the X-Order-Token header.
"""

from fastapi import APIRouter, Request, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import get_current_user
from modules.payment.service import payment_service

router = APIRouter(prefix="/api/payment", tags=["payment"])


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=100)   # intent id / payment id


class RazorpayCallbackRequest(BaseModel):
    razorpay_order_id: str = Field(..., max_length=100)
    razorpay_payment_id: str = Field(..., max_length=100)
    razorpay_signature: str = Field(..., max_length=200)


# ==========================================
# 🏦 Razorpay: Webhook (signed, server-to-server)
# ==========================================

@router.post("/razorpay/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """Raw body is read before any parsing; the signature covers its exact bytes."""
    raw_body = await request.body()
    result = payment_service.handle_razorpay_webhook(db, raw_body, x_razorpay_signature)
    db.commit()
    return JSONResponse({"status": "ok", **result})


# ==========================================
# 🏦 Razorpay: Checkout callback (advisory)
# ==========================================

@router.post("/razorpay/callback")
async def razorpay_callback(
    body: RazorpayCallbackRequest,
    db: Session = Depends(get_db),
):
    result = payment_service.verify_checkout_callback(
        db, body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature,
    )
    return JSONResponse(result)


# ==========================================
# 💳 Create payment
# ==========================================

@router.post("/{order_id}/intent")
async def create_payment(
    order_id: int,
    x_order_token: str = Header(None),
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    result = payment_service.create_payment_intent(db, order_id, me, x_order_token)
    db.commit()
    return JSONResponse(result)


# ==========================================
# ✅ Verify
# ==========================================

@router.post("/{order_id}/verify")
async def verify_payment(
    order_id: int,
    body: VerifyPaymentRequest,
    x_order_token: str = Header(None),
    db: Session = Depends(get_db),
    me=Depends(get_current_user),
):
    result = payment_service.verify_payment(db, order_id, body.reference.strip(), me, x_order_token)
    db.commit()
    return JSONResponse(result, status_code=200 if result["success"] else 402)
