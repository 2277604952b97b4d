"""
Order Module - Admin Routes
==============================
Status and tracking-number edits for operators.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.exceptions import NotFoundError
from modules.auth.deps import require_admin
from modules.order.service import order_service
from modules.order import state_machine

router = APIRouter(prefix="/api/admin/orders", tags=["order-admin"])


class AdminStatusRequest(BaseModel):
    status: Optional[str] = Field(None, max_length=20)
    tracking_number: Optional[str] = Field(None, max_length=100)


@router.post("/{order_id}/status")
async def update_order_status(
    order_id: int,
    body: AdminStatusRequest,
    db: Session = Depends(get_db),
    user=Depends(require_admin),
):
    """Move an order to processing/shipped/delivered and/or set its tracking number."""
    order = order_service.get_order_for_update(db, order_id)
    if not order:
        raise NotFoundError("Order not found")

    state_machine.admin_update(
        db, order,
        status=body.status.strip().lower() if body.status else None,
        tracking_number=body.tracking_number,
        admin_id=user.id,
    )
    db.commit()
    return JSONResponse({"order": order.to_dict(include_items=False)})
