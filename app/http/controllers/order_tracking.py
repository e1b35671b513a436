"""
Customer-facing order tracking. Only the order's owner may read it.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth import get_current_user
from app.http.dependencies import get_lifecycle
from app.models import User
from app.services.shipment_lifecycle import ShipmentLifecycleManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{order_id}/track")
async def track_my_order(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(get_current_user),
):
    """
    Live tracking merged over the stored shipment fields.
    If ShipRocket is unreachable the last known status is returned instead of an error.
    """
    order = lifecycle.get_order(order_id)
    if order.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return await lifecycle.customer_tracking(order)
