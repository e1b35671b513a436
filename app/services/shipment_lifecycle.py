"""
ShipmentLifecycleManager: order -> ShipRocket shipment transitions.

Shipment state is derived from the linkage columns, not from Order.status:
  NONE -> ORDER_CREATED (courier_order_id) -> AWB_ASSIGNED (awb_code) -> PICKUP_SCHEDULED (pickup_token)
  -> IN_TRANSIT -> DELIVERED, CANCELLED from anything but DELIVERED, and a shipment-level cancel
  returns to ORDER_CREATED so a new courier can be assigned.

Preconditions are checked before any gateway call. Writes that must happen at most once per order
(aggregator order, AWB, pickup) are conditional UPDATEs, so two concurrent requests cannot both win
even across processes.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from sqlalchemy.orm import Session

from app.exceptions import (
    InvalidStateError,
    NotFoundError,
    NotServiceableError,
    RequiresConfirmationError,
    ShippingError,
    ConfigurationError,
    ValidationError,
)
from app.models import Order, OrderItem, OrderStatus, ShippingSettings
from app.services.notifications import (
    NotificationBridge,
    notify_courier_assigned,
    notify_pickup_scheduled,
    notify_shipment_cancelled,
)
from app.services.rate_shopper import rank_quotes, select_cheapest, select_fastest, select_for_auto_assign
from app.services.shiprocket_service import build_order_payload, is_cod_order, resolve_pickup_location
from app.services.shipping_settings import SettingsStore
from app.services.shipping_utils import (
    aggregator_order_id,
    calculate_order_weight,
    friendly_error_message,
    get_delivery_text,
    is_valid_pincode,
)
from app.services.status_mapping import (
    AUTO_AWB_SKIP_COURIER_STATUSES,
    COURIER_STATUS_NEW,
    PICKUP_BLOCKED_COURIER_STATUSES,
    format_status_label,
    is_dangerous,
    is_forward_progress,
    is_terminal,
    normalize_courier_status,
)
from app.services.status_reconciler import StatusReconciler, StatusUpdate

logger = logging.getLogger(__name__)

CREATABLE_ORDER_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)
CANCEL_MODES = ("order", "shipment")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def shipment_state(order: Order) -> str:
    """Lifecycle position derived from the linkage columns."""
    courier_status = normalize_courier_status(order.courier_status)
    if courier_status in ("CANCELLED", "CANCELED"):
        return "CANCELLED"
    if courier_status == "DELIVERED":
        return "DELIVERED"
    if not order.courier_order_id:
        return "NONE"
    if not order.awb_code:
        return "ORDER_CREATED"
    if courier_status in ("SHIPPED", "PICKED_UP", "IN_TRANSIT", "OUT_FOR_DELIVERY", "REACHED_DESTINATION_HUB"):
        return "IN_TRANSIT"
    if order.pickup_token:
        return "PICKUP_SCHEDULED"
    return "AWB_ASSIGNED"


class ShipmentLifecycleManager:
    def __init__(
        self,
        db: Session,
        store: SettingsStore,
        gateway_provider: Callable[[], Any],
        notifier: Optional[NotificationBridge] = None,
    ):
        self.db = db
        self.store = store
        self._gateway_provider = gateway_provider
        self._gateway = None
        self.notifier = notifier
        self.reconciler = StatusReconciler(db, notifier)

    @property
    def gateway(self):
        # Built lazily: precondition failures must not require a configured integration
        if self._gateway is None:
            self._gateway = self._gateway_provider()
        return self._gateway

    # ---- helpers ----

    def get_order(self, order_id: str) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _items(self, order: Order) -> List[OrderItem]:
        return self.db.query(OrderItem).filter(OrderItem.order_id == order.id).all()

    def _settings(self) -> ShippingSettings:
        return self.store.require(require_enabled=True)

    def _route_weight(self, order: Order, defaults: dict) -> float:
        return calculate_order_weight(
            [(int(it.quantity or 0), float(it.weight) if it.weight is not None else None) for it in self._items(order)],
            defaults["weight"],
        )

    def _conditional_update(self, order: Order, conditions: list, values: dict) -> bool:
        rows = (
            self.db.query(Order)
            .filter(Order.id == order.id, *conditions)
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(order)
        return rows == 1

    def _promote(self, order: Order, target: OrderStatus, allowed_from: tuple) -> bool:
        """Move Order.status forward only if it is still one of allowed_from."""
        if order.status not in allowed_from:
            return False
        return self._conditional_update(order, [Order.status.in_(allowed_from)], {Order.status: target})

    # ---- create ----

    async def create_shipment(self, order_id: str) -> dict:
        order = self.get_order(order_id)
        if order.courier_order_id:
            raise InvalidStateError(
                "Order already has a ShipRocket shipment", {"shiprocketOrderId": order.courier_order_id}
            )
        if order.status not in CREATABLE_ORDER_STATUSES:
            raise InvalidStateError(
                f"Cannot create shipment for order with status: {order.status.value}. "
                "Order must not be shipped, delivered or cancelled."
            )
        row = self._settings()
        package = self.store.package_defaults(row)
        gateway = self.gateway

        pickup_name = row.pickup_location_name
        try:
            locations = await gateway.get_pickup_locations()
            pickup_name = resolve_pickup_location(locations, row.pickup_pincode, row.pickup_location_name)
        except ShippingError as e:
            logger.warning("Could not fetch pickup locations, using configured name: %s", e)
        if not pickup_name:
            raise ConfigurationError("Pickup location not configured")

        items = self._items(order)
        payload = build_order_payload(order, items, pickup_location=pickup_name, package=package)
        created = await gateway.create_order(payload)

        shipment_id = created.courier_shipment_id
        status = created.status or "NEW"
        awb_code = created.awb_code
        courier_name = created.courier_name
        if not shipment_id:
            # Create response sometimes omits the shipment; enrich from order details
            try:
                details = await gateway.get_order_details(created.courier_order_id)
                if details.shipment_id:
                    shipment_id = details.shipment_id
                    status = details.status or status
                    awb_code = details.awb_code or awb_code
                    courier_name = details.courier_name or courier_name
            except ShippingError as e:
                logger.warning("Order details fetch after create failed for %s: %s", created.courier_order_id, e)

        values = {
            Order.courier_order_id: created.courier_order_id,
            Order.courier_shipment_id: shipment_id,
            Order.courier_status: normalize_courier_status(status) or "NEW",
        }
        if awb_code and shipment_id:
            values[Order.awb_code] = awb_code
        elif awb_code:
            logger.warning(
                "ShipRocket order %s came back with AWB %s but no shipment id; not linking the AWB. Run sync for order %s",
                created.courier_order_id, awb_code, order.id,
            )
        if courier_name:
            values[Order.courier_name] = courier_name
        if not self._conditional_update(order, [Order.courier_order_id.is_(None)], values):
            logger.error(
                "ShipRocket order %s created for %s but another request linked it first; cancel it in ShipRocket",
                created.courier_order_id, order.id,
            )
            raise InvalidStateError("Order already has a ShipRocket shipment")
        logger.info("ShipRocket order %s created for order %s (shipment %s)", created.courier_order_id, order.id, shipment_id)

        self._promote(order, OrderStatus.CONFIRMED, (OrderStatus.PENDING,))

        auto_awb = None
        if (
            row.auto_assign_courier
            and order.courier_shipment_id
            and not order.awb_code
            and normalize_courier_status(order.courier_status) not in AUTO_AWB_SKIP_COURIER_STATUSES
        ):
            auto_awb = await self._auto_assign(order, row, package)

        response = {
            "success": True,
            "message": "ShipRocket order created and AWB generated successfully"
            if auto_awb and auto_awb.get("awbCode")
            else "ShipRocket order created successfully",
            "shiprocket": {
                "orderId": order.courier_order_id,
                "shipmentId": order.courier_shipment_id,
                "status": order.courier_status,
                "awbCode": order.awb_code,
                "courierName": order.courier_name,
            },
            "autoAwb": auto_awb,
        }
        if not order.courier_shipment_id:
            response["warning"] = "ShipRocket did not return a shipment id yet. Run sync before assigning a courier."
        return response

    async def _auto_assign(self, order: Order, row: ShippingSettings, package: dict) -> dict:
        """Partial success: failures are reported, never raised."""
        try:
            courier_id = None
            delivery_pincode = (order.shipping_address or {}).get("pincode")
            if delivery_pincode and row.pickup_pincode:
                try:
                    quotes = await self.gateway.check_serviceability(
                        row.pickup_pincode,
                        str(delivery_pincode),
                        self._route_weight(order, package),
                        is_cod_order(order),
                        float(order.total or 0),
                    )
                    chosen = select_for_auto_assign(quotes.couriers, is_cod_order(order), row.preferred_courier_id)
                    if chosen is not None:
                        courier_id = chosen.courier_id
                        logger.info(
                            "Auto-selected courier %s (%s) @ %.2f for order %s",
                            chosen.courier_name, chosen.courier_id, chosen.total_charge(is_cod_order(order)), order.id,
                        )
                except ShippingError as e:
                    logger.warning("Rate shopping failed for order %s, letting ShipRocket pick: %s", order.id, e)
            result = await self._assign(order, courier_id)
            auto = {"awbCode": result["awb"]["code"], "courierName": result["awb"]["courierName"], "courierId": result["awb"]["courierId"]}
            if "autoPickup" in result:
                auto["autoPickup"] = result["autoPickup"]
            return auto
        except ShippingError as e:
            logger.warning("Auto AWB generation failed for order %s: %s", order.id, e)
            return {"error": friendly_error_message(e)}

    # ---- AWB ----

    def _check_can_assign(self, order: Order) -> None:
        if not order.courier_shipment_id:
            raise InvalidStateError("Order does not have a ShipRocket shipment. Create ShipRocket order first.")
        if order.awb_code:
            raise InvalidStateError("AWB already assigned for this order", {"awbCode": order.awb_code})
        if is_terminal(order.courier_status):
            raise InvalidStateError(f"Cannot assign AWB for shipment with status: {order.courier_status}")

    async def assign_awb(self, order_id: str, courier_id: Optional[int] = None, select_cheapest_courier: bool = False) -> dict:
        order = self.get_order(order_id)
        self._check_can_assign(order)
        if courier_id is None and select_cheapest_courier:
            row = self._settings()
            route = await self._quotes_for(order, row)
            cheapest = select_cheapest(route["quotes"], route["isCOD"])
            if cheapest is None:
                raise NotServiceableError("No couriers available for this route")
            courier_id = cheapest.courier_id
        return await self._assign(order, courier_id)

    async def _assign(self, order: Order, courier_id: Optional[int]) -> dict:
        self._check_can_assign(order)
        result = await self.gateway.generate_awb(order.courier_shipment_id, courier_id)
        won = self._conditional_update(
            order,
            [Order.awb_code.is_(None)],
            {
                Order.awb_code: result.awb_code,
                Order.courier_id: result.courier_id,
                Order.courier_name: result.courier_name,
                Order.courier_status: "AWB_ASSIGNED",
            },
        )
        if not won:
            logger.warning("AWB %s for order %s lost to a concurrent assignment (%s)", result.awb_code, order.id, order.awb_code)
            raise InvalidStateError("AWB already assigned for this order", {"awbCode": order.awb_code})
        logger.info("AWB %s assigned to order %s via %s", result.awb_code, order.id, result.courier_name)
        self._promote(order, OrderStatus.PROCESSING, (OrderStatus.PENDING, OrderStatus.CONFIRMED))
        notify_courier_assigned(self.notifier, order)

        response = {
            "success": True,
            "message": "AWB generated successfully",
            "awb": {
                "code": result.awb_code,
                "courierId": result.courier_id,
                "courierName": result.courier_name,
                "assignedAt": result.assigned_at,
            },
        }
        row = self.store.get()
        if row is not None and row.auto_schedule_pickup:
            try:
                pickup = await self._schedule(order)
                response["autoPickup"] = pickup["pickup"]
            except ShippingError as e:
                logger.warning("Auto pickup failed for order %s: %s", order.id, e)
                response["autoPickup"] = {"error": friendly_error_message(e)}
        return response

    # ---- couriers / serviceability ----

    async def _quotes_for(self, order: Order, row: ShippingSettings) -> dict:
        delivery_pincode = (order.shipping_address or {}).get("pincode")
        if not delivery_pincode:
            raise InvalidStateError("Order does not have a delivery pincode")
        if not row.pickup_pincode:
            raise ConfigurationError("Pickup pincode not configured in settings")
        package = self.store.package_defaults(row)
        weight = self._route_weight(order, package)
        is_cod = is_cod_order(order)
        result = await self.gateway.check_serviceability(
            row.pickup_pincode, str(delivery_pincode), weight, is_cod, float(order.total or 0)
        )
        return {
            "quotes": result.couriers,
            "isCOD": is_cod,
            "route": {"pickup": row.pickup_pincode, "delivery": str(delivery_pincode), "weight": weight, "isCOD": is_cod},
        }

    async def list_couriers(self, order_id: str) -> dict:
        order = self.get_order(order_id)
        if order.awb_code:
            raise InvalidStateError("AWB already assigned for this order", {"awbCode": order.awb_code})
        if not order.courier_shipment_id:
            raise InvalidStateError("Order does not have a ShipRocket shipment. Create ShipRocket order first.")
        route = await self._quotes_for(order, self._settings())
        quotes = route["quotes"]
        if not quotes:
            return {
                "success": True,
                "available": False,
                "message": "No couriers available for this route",
                "couriers": [],
                "route": route["route"],
            }
        return {
            "success": True,
            "available": True,
            "message": f"{len(quotes)} courier(s) available",
            "couriers": rank_quotes(quotes, route["isCOD"]),
            "route": route["route"],
        }

    async def check_serviceability(
        self,
        delivery_pincode: str,
        weight: Optional[float] = None,
        is_cod: bool = False,
        declared_value: Optional[float] = None,
    ) -> dict:
        """Pre-checkout availability for the storefront. No couriers is a normal answer."""
        if not is_valid_pincode(delivery_pincode):
            raise ValidationError("Invalid pincode format. Must be 6 digits.")
        row = self._settings()
        if not row.pickup_pincode:
            raise ConfigurationError("Pickup location not configured")
        package_weight = weight or self.store.package_defaults(row)["weight"]
        result = await self.gateway.check_serviceability(
            row.pickup_pincode, delivery_pincode, package_weight, is_cod, declared_value
        )
        if not result.available:
            return {
                "success": True,
                "available": False,
                "message": "Delivery is not available to this pincode",
                "couriers": [],
            }
        cheapest = select_cheapest(result.couriers, is_cod)
        fastest = select_fastest(result.couriers)
        return {
            "success": True,
            "available": True,
            "message": f"{len(result.couriers)} courier(s) available",
            "couriers": rank_quotes(result.couriers, is_cod),
            "cheapest": {"id": cheapest.courier_id, "name": cheapest.courier_name, "charge": cheapest.total_charge(is_cod)},
            "fastest": {
                "id": fastest.courier_id,
                "name": fastest.courier_name,
                "days": fastest.estimated_delivery_days,
                "deliveryText": get_delivery_text(fastest.estimated_delivery_days),
            },
        }

    # ---- pickup ----

    def _check_can_pickup(self, order: Order) -> None:
        if order.status in (OrderStatus.CANCELLED, OrderStatus.DELIVERED):
            raise InvalidStateError(f"Cannot schedule pickup for {order.status.value} order")
        if normalize_courier_status(order.courier_status) in PICKUP_BLOCKED_COURIER_STATUSES:
            raise InvalidStateError(f"Cannot schedule pickup for shipment with status: {order.courier_status}")
        if not order.courier_shipment_id:
            raise InvalidStateError("Order does not have a ShipRocket shipment. Create ShipRocket order first.")
        if not order.awb_code:
            raise InvalidStateError("AWB not assigned. Generate AWB first.")
        if order.pickup_token:
            raise InvalidStateError(
                "Pickup already scheduled",
                {"pickup": {"scheduledDate": order.pickup_scheduled_date, "tokenNumber": order.pickup_token}},
            )

    async def schedule_pickup(self, order_id: str) -> dict:
        order = self.get_order(order_id)
        self._check_can_pickup(order)
        self._settings()
        return await self._schedule(order)

    async def _schedule(self, order: Order) -> dict:
        self._check_can_pickup(order)
        result = await self.gateway.schedule_pickup([order.courier_shipment_id])
        won = self._conditional_update(
            order,
            [Order.pickup_token.is_(None), Order.awb_code == order.awb_code],
            {
                Order.pickup_scheduled_date: result.scheduled_date,
                Order.pickup_token: result.pickup_token or result.scheduled_date,
                Order.courier_status: "PICKUP_SCHEDULED",
            },
        )
        if not won:
            raise InvalidStateError("Pickup already scheduled")
        if is_forward_progress(order.status, OrderStatus.SHIPPED):
            self._promote(order, OrderStatus.SHIPPED, (order.status,))
        logger.info("Pickup scheduled for order %s on %s", order.id, result.scheduled_date)
        notify_pickup_scheduled(self.notifier, order)
        return {
            "success": True,
            "message": "Pickup scheduled successfully",
            "pickup": {"scheduledDate": result.scheduled_date, "tokenNumber": result.pickup_token},
        }

    # ---- documents ----

    def _check_has_awb(self, order: Order) -> None:
        if not order.courier_shipment_id:
            raise InvalidStateError("Order does not have a ShipRocket shipment. Create ShipRocket order first.")
        if not order.awb_code:
            raise InvalidStateError("AWB not assigned. Generate AWB first.")

    async def get_label(self, order_id: str) -> dict:
        order = self.get_order(order_id)
        self._check_has_awb(order)
        if order.label_url:
            return {"success": True, "labelUrl": order.label_url, "cached": True}
        return await self._generate_label(order)

    async def regenerate_label(self, order_id: str) -> dict:
        order = self.get_order(order_id)
        self._check_has_awb(order)
        return await self._generate_label(order)

    async def _generate_label(self, order: Order) -> dict:
        label_url = await self.gateway.generate_label([order.courier_shipment_id])
        order.label_url = label_url
        self.db.commit()
        return {"success": True, "labelUrl": label_url, "cached": False}

    async def generate_manifest(self, order_id: str) -> dict:
        order = self.get_order(order_id)
        self._check_has_awb(order)
        manifest_url = await self.gateway.generate_manifest([order.courier_shipment_id])
        return {"success": True, "manifestUrl": manifest_url}

    # ---- cancel ----

    async def cancel(self, order_id: str, mode: str = "order", force: bool = False) -> dict:
        if mode not in CANCEL_MODES:
            raise ValidationError("mode must be 'order' or 'shipment'")
        order = self.get_order(order_id)
        if mode == "order":
            if not order.courier_order_id:
                raise InvalidStateError("Order does not have a ShipRocket shipment.")
            if normalize_courier_status(order.courier_status) in ("CANCELLED", "CANCELED"):
                raise InvalidStateError("Shipment is already cancelled.")
        else:
            if not order.awb_code:
                raise InvalidStateError("No AWB assigned; nothing to cancel at shipment level.")
        if is_terminal(order.courier_status):
            raise InvalidStateError(f"Shipment is already {order.courier_status}.")
        if is_dangerous(order.courier_status) and not force:
            raise RequiresConfirmationError(
                f"Shipment is already {order.courier_status}. Cancellation may incur charges. Send force: true to confirm.",
                order.courier_status,
            )

        if mode == "order":
            await self.gateway.cancel_order([order.courier_order_id])
            previous = order.status
            order.courier_status = "CANCELLED"
            order.status = OrderStatus.CANCELLED
            self.db.commit()
            logger.info("ShipRocket order %s cancelled for order %s (was %s)", order.courier_order_id, order.id, previous.value)
            notify_shipment_cancelled(self.notifier, order, "order")
            return {"success": True, "mode": "order", "message": "Order cancelled successfully"}

        awb = order.awb_code
        await self.gateway.cancel_shipment([awb])
        reset = self._conditional_update(
            order,
            [Order.awb_code == awb],
            {
                Order.awb_code: None,
                Order.courier_id: None,
                Order.courier_name: None,
                Order.pickup_token: None,
                Order.pickup_scheduled_date: None,
                Order.label_url: None,
                Order.tracking_url: None,
                Order.estimated_delivery_date: None,
                Order.courier_status: COURIER_STATUS_NEW,
                Order.status: OrderStatus.CONFIRMED,
                Order.cancelled_awb_code: awb,
            },
        )
        if not reset:
            logger.error(
                "Shipment %s cancelled in ShipRocket but order %s now has AWB %s; local state left as is",
                awb, order.id, order.awb_code,
            )
            raise InvalidStateError(
                "Order changed while the shipment was being cancelled. Sync the order and check it in ShipRocket.",
                {"awbCode": order.awb_code, "cancelledAwb": awb},
            )
        logger.info("Shipment %s cancelled for order %s; ready for courier reassignment", awb, order.id)
        notify_shipment_cancelled(self.notifier, order, "shipment")
        return {
            "success": True,
            "mode": "shipment",
            "message": "Shipment cancelled. You can now assign a new courier.",
            "cancelledAwb": awb,
        }

    # ---- sync / track ----

    async def sync(self, order_id: str) -> dict:
        """
        Re-read the aggregator order and fold it into the local linkage.
        An order with no courier_order_id is looked up by the order_id sent on create, which is how a create
        that timed out gets linked without a second POST.
        """
        order = self.get_order(order_id)
        gateway = self.gateway
        has_changes = False
        if order.courier_order_id:
            details = await gateway.get_order_details(order.courier_order_id)
        else:
            details = await gateway.find_order_by_channel_id(aggregator_order_id(order.id))
            if details is None:
                raise InvalidStateError(
                    "No ShipRocket order exists for this order yet. It is safe to create the shipment."
                )
            self._link_recovered_order(order, details)
            has_changes = True

        if details.shipment_id and not order.courier_shipment_id:
            if self._conditional_update(
                order, [Order.courier_shipment_id.is_(None)], {Order.courier_shipment_id: details.shipment_id}
            ):
                has_changes = True

        # Order details keep showing an AWB after a shipment-level cancel
        stale_awb = bool(details.awb_code) and details.awb_code == order.cancelled_awb_code
        details_cancelled = normalize_courier_status(details.status) in ("CANCELLED", "CANCELED")
        if details.awb_code and not order.awb_code and order.courier_shipment_id and not stale_awb and not details_cancelled:
            values = {Order.awb_code: details.awb_code}
            if details.courier_id:
                values[Order.courier_id] = details.courier_id
            if self._conditional_update(order, [Order.awb_code.is_(None)], values):
                logger.info("Order %s picked up AWB %s from ShipRocket order details", order.id, details.awb_code)
                has_changes = True
        elif details.awb_code and order.awb_code and details.awb_code != order.awb_code:
            logger.warning(
                "Order %s has AWB %s but ShipRocket order details report %s; keeping the local AWB",
                order.id, order.awb_code, details.awb_code,
            )

        order.last_synced_at = _now()
        self.db.flush()
        result = self.reconciler.apply(
            order,
            StatusUpdate(
                status_text=None if stale_awb else details.status,
                courier_name=None if stale_awb else details.courier_name,
                source="sync",
            ),
        )
        has_changes = has_changes or "courier_status" in result.changed_fields or result.status_changed
        return {
            "success": True,
            "message": "Order synced successfully" if has_changes else "Order is already up to date",
            "shiprocket": {
                "orderId": details.courier_order_id,
                "shipmentId": details.shipment_id,
                "status": details.status,
                "awbCode": order.awb_code,
                "courierName": details.courier_name,
            },
            "updated": has_changes,
        }

    def _link_recovered_order(self, order: Order, details) -> None:
        if not self._conditional_update(
            order,
            [Order.courier_order_id.is_(None)],
            {Order.courier_order_id: details.courier_order_id, Order.courier_status: COURIER_STATUS_NEW},
        ):
            raise InvalidStateError(
                "Order was linked to a ShipRocket order by another request", {"shiprocketOrderId": order.courier_order_id}
            )
        logger.info("Recovered ShipRocket order %s for order %s", details.courier_order_id, order.id)
        self._promote(order, OrderStatus.CONFIRMED, (OrderStatus.PENDING,))

    async def _track_and_reconcile(self, order: Order, source: str):
        tracking = await self.gateway.track_by_awb(order.awb_code)
        order.last_synced_at = _now()
        self.db.flush()
        result = self.reconciler.apply(
            order,
            StatusUpdate(
                status_code=tracking.current_status_id or None,
                status_text=tracking.current_status,
                courier_name=tracking.courier_name or None,
                etd=tracking.etd or None,
                tracking_url=tracking.track_url or None,
                delivered_date=tracking.delivered_date,
                source=source,
            ),
        )
        return tracking, result

    async def track(self, order_id: str) -> dict:
        order = self.get_order(order_id)
        if not order.awb_code:
            raise InvalidStateError("Order does not have an AWB. Generate AWB first.")
        tracking, result = await self._track_and_reconcile(order, "track")
        return {
            "success": True,
            "tracking": {
                "awb": tracking.awb,
                "courier": order.courier_name or tracking.courier_name,
                "currentStatus": tracking.current_status,
                "statusId": tracking.current_status_id,
                "statusLabel": result.courier_status,
                "shipmentState": shipment_state(order),
                "orderStatus": order.status.value,
                "estimatedDelivery": tracking.etd,
                "deliveredDate": tracking.delivered_date,
                "trackingUrl": tracking.track_url,
                "events": [
                    {
                        "date": e.date,
                        "status": e.status,
                        "activity": e.activity,
                        "location": e.location,
                        "statusLabel": e.status_label,
                    }
                    for e in tracking.events
                ],
            },
        }

    async def customer_tracking(self, order: Order) -> dict:
        """Tracking for the owning customer. Live failures fall back to the cached snapshot."""
        if not order.awb_code:
            return {
                "success": True,
                "tracking": {
                    "orderId": order.id,
                    "status": order.status.value,
                    "shiprocketStatus": order.courier_status,
                    "hasShipment": False,
                    "message": "Your order is being prepared for shipment"
                    if order.courier_order_id
                    else "Shipment not yet created",
                },
            }

        live = None
        try:
            tracking, _ = await self._track_and_reconcile(order, "customer_track")
            live = {
                "currentStatus": tracking.current_status,
                "etd": tracking.etd,
                "deliveredDate": tracking.delivered_date,
                "trackingUrl": tracking.track_url,
                "events": [
                    {
                        "date": e.date,
                        "status": e.status_label or e.status or "",
                        "activity": e.activity,
                        "location": e.location,
                    }
                    for e in tracking.events
                ],
            }
        except ShippingError as e:
            logger.warning("Live tracking failed for order %s, serving cached status: %s", order.id, e)

        return {
            "success": True,
            "tracking": {
                "orderId": order.id,
                "status": order.status.value,
                "hasShipment": True,
                "shipmentState": shipment_state(order),
                "awbCode": order.awb_code,
                "courierName": order.courier_name,
                "shiprocketStatus": (live or {}).get("currentStatus") or order.courier_status,
                "statusLabel": format_status_label((live or {}).get("currentStatus") or order.courier_status),
                "estimatedDelivery": (live or {}).get("etd") or order.estimated_delivery_date,
                "deliveredDate": (live or {}).get("deliveredDate") or order.delivered_date,
                "trackingUrl": (live or {}).get("trackingUrl") or order.tracking_url,
                "pickupDate": order.pickup_scheduled_date,
                "events": (live or {}).get("events") or [],
                "live": live is not None,
            },
        }
