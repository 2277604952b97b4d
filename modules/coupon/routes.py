"""
Coupon Routes - Customer Facing
==================================
Stateless coupon check for the checkout page.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.coupon.service import coupon_service

router = APIRouter(prefix="/api/coupon", tags=["coupon"])


class ValidateCouponRequest(BaseModel):
    code: str = Field(..., max_length=50)
    subtotal: Decimal = Field(..., ge=0)


@router.post("/validate")
async def validate_coupon(
    body: ValidateCouponRequest,
    db: Session = Depends(get_db),
):
    """Validate a code against a cart subtotal. Never writes."""
    if not body.code.strip():
        return JSONResponse({"valid": False, "reason": "NOT_FOUND", "message": "Please enter a coupon code"})

    return JSONResponse(coupon_service.validate(db, body.code, body.subtotal))
