"""
Shipment Routes - Admin
=========================
Book, cancel, reset and print carrier shipments.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.exceptions import ExternalServiceError, ValidationError
from modules.auth.deps import require_admin
from modules.shipment.service import shipment_service

router = APIRouter(prefix="/api/admin/shipments", tags=["shipment-admin"])


class CreateShipmentRequest(BaseModel):
    order_id: int


class CancelShipmentRequest(BaseModel):
    awb: Optional[str] = Field(None, max_length=50)
    order_id: Optional[int] = None


# ==========================================
# 📦 Create
# ==========================================

@router.post("")
async def create_shipment(
    body: CreateShipmentRequest,
    db: Session = Depends(get_db),
    user=Depends(require_admin),
):
    try:
        result = shipment_service.create_shipment(db, body.order_id, changed_by=f"admin:{user.id}")
    except (ValidationError, ExternalServiceError):
        # keep the failure recorded on the order
        db.commit()
        raise
    db.commit()
    return JSONResponse(result, status_code=201 if result["created"] else 200)


# ==========================================
# ❌ Cancel
# ==========================================

@router.post("/cancel")
async def cancel_shipment(
    body: CancelShipmentRequest,
    db: Session = Depends(get_db),
    user=Depends(require_admin),
):
    awb = body.awb.strip() if body.awb else None
    result = shipment_service.cancel_shipment(
        db, awb=awb, order_id=body.order_id, changed_by=f"admin:{user.id}",
    )
    db.commit()
    return JSONResponse(result)


# ==========================================
# 🔁 Reset for retry
# ==========================================

@router.post("/{order_id}/reset")
async def reset_shipment(
    order_id: int,
    db: Session = Depends(get_db),
    user=Depends(require_admin),
):
    result = shipment_service.reset_shipment(db, order_id, changed_by=f"admin:{user.id}")
    db.commit()
    return JSONResponse(result)


# ==========================================
# 🏷️ Label
# ==========================================

@router.get("/{awb}/label")
async def shipment_label(
    awb: str,
    db: Session = Depends(get_db),
    user=Depends(require_admin),
):
    document = shipment_service.get_label(db, awb)
    db.commit()
    return Response(
        content=document.content,
        media_type=document.content_type,
        headers={"Content-Disposition": f'inline; filename="label-{awb}.pdf"'},
    )
