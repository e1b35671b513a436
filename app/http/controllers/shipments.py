"""
Shipment routes (ShipRocket): create, AWB, couriers, pickup, label, manifest, cancel, sync, track.
All order-scoped routes are admin only; serviceability is public (storefront checkout).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends

from app.auth import require_admin
from app.http.dependencies import get_lifecycle
from app.http.requests import AssignAwbRequest, CancelShipmentRequest, ServiceabilityRequest
from app.models import User
from app.services.shipment_lifecycle import ShipmentLifecycleManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/serviceability")
async def check_serviceability(
    body: ServiceabilityRequest,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
):
    """Public pre-checkout check: which couriers deliver to a pincode, cheapest and fastest."""
    return await lifecycle.check_serviceability(
        body.deliveryPincode,
        weight=body.weight,
        is_cod=body.isCOD,
        declared_value=body.declaredValue,
    )


@router.post("/{order_id}/create")
async def create_shipment(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    """Create the ShipRocket order; auto-assigns a courier when enabled in settings."""
    logger.info("Create shipment requested for order %s by %s", order_id, current_user.email)
    return await lifecycle.create_shipment(order_id)


@router.post("/{order_id}/awb")
async def assign_awb(
    order_id: str,
    body: Optional[AssignAwbRequest] = Body(None),
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    body = body or AssignAwbRequest()
    return await lifecycle.assign_awb(order_id, courier_id=body.courierId, select_cheapest_courier=body.selectCheapest)


@router.get("/{order_id}/couriers")
async def list_couriers(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    """Quotes for the order's route, cheapest first."""
    return await lifecycle.list_couriers(order_id)


@router.post("/{order_id}/pickup")
async def schedule_pickup(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    return await lifecycle.schedule_pickup(order_id)


@router.get("/{order_id}/label")
async def get_label(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    """Cached label URL if we have one, otherwise generate."""
    return await lifecycle.get_label(order_id)


@router.post("/{order_id}/label")
async def regenerate_label(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    return await lifecycle.regenerate_label(order_id)


@router.post("/{order_id}/manifest")
async def generate_manifest(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    return await lifecycle.generate_manifest(order_id)


@router.post("/{order_id}/cancel")
async def cancel_shipment(
    order_id: str,
    body: Optional[CancelShipmentRequest] = Body(None),
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    """
    mode=order cancels the whole ShipRocket order.
    mode=shipment cancels only the AWB so another courier can be assigned.
    Shipments already with the courier need force=true.
    """
    body = body or CancelShipmentRequest()
    logger.info("Cancel (%s, force=%s) requested for order %s by %s", body.mode, body.force, order_id, current_user.email)
    return await lifecycle.cancel(order_id, mode=body.mode, force=body.force)


@router.post("/{order_id}/sync")
async def sync_shipment(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    """Re-read the ShipRocket order and reconcile; also the recovery step after an unknown outcome."""
    return await lifecycle.sync(order_id)


@router.get("/{order_id}/track")
async def track_shipment(
    order_id: str,
    lifecycle: ShipmentLifecycleManager = Depends(get_lifecycle),
    current_user: User = Depends(require_admin),
):
    return await lifecycle.track(order_id)
