"""
NotificationBridge: customer-facing shipping events.
Delivery (email/push) is someone else's job; the default bridge records rows in `notifications`.
Notifications are best-effort and never fail the operation that triggered them.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Notification, NotificationType, Order, OrderStatus

logger = logging.getLogger(__name__)


class NotificationBridge:
    def notify(self, user_id: str, title: str, message: str, metadata: Optional[dict[str, Any]] = None) -> None:
        raise NotImplementedError


class DatabaseNotificationBridge(NotificationBridge):
    def __init__(self, db: Session):
        self.db = db

    def notify(self, user_id: str, title: str, message: str, metadata: Optional[dict[str, Any]] = None) -> None:
        metadata = dict(metadata or {})
        event = metadata.get("event")
        try:
            self.db.add(
                Notification(
                    user_id=user_id,
                    order_id=metadata.get("orderId"),
                    type=NotificationType.ORDER_STATUS if event == "status_changed" else NotificationType.SHIPPING,
                    title=title,
                    message=message,
                    meta=metadata,
                )
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning("Failed to record notification for user %s: %s", user_id, e)


def short_order_id(order_id: str) -> str:
    return (order_id or "")[:8].upper()


_STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: ("Order Confirmed", "Your order #{ref} has been confirmed and is being prepared."),
    OrderStatus.PROCESSING: ("Order Processing", "Your order #{ref} is being processed for shipping."),
    OrderStatus.SHIPPED: ("Order Shipped", "Great news! Your order #{ref} has been shipped and is on its way."),
    OrderStatus.DELIVERED: ("Order Delivered", "Your order #{ref} has been delivered."),
    OrderStatus.CANCELLED: ("Order Cancelled", "Your order #{ref} has been cancelled."),
}


def _send(bridge: Optional[NotificationBridge], order: Order, title: str, message: str, metadata: dict) -> None:
    if bridge is None or not order.user_id:
        return
    bridge.notify(order.user_id, title, message, {"orderId": order.id, **metadata})


def notify_courier_assigned(bridge: Optional[NotificationBridge], order: Order) -> None:
    _send(
        bridge,
        order,
        "Courier Assigned",
        f"Your order #{short_order_id(order.id)} will be shipped via {order.courier_name or 'our courier partner'}. "
        f"Tracking number: {order.awb_code}",
        {"event": "courier_assigned", "awbCode": order.awb_code, "courierName": order.courier_name},
    )


def notify_pickup_scheduled(bridge: Optional[NotificationBridge], order: Order) -> None:
    _send(
        bridge,
        order,
        "Pickup Scheduled",
        f"Your order #{short_order_id(order.id)} is scheduled for courier pickup on {order.pickup_scheduled_date}.",
        {"event": "pickup_scheduled", "pickupDate": order.pickup_scheduled_date},
    )


def notify_shipment_cancelled(bridge: Optional[NotificationBridge], order: Order, mode: str) -> None:
    if mode == "order":
        message = f"The shipment for your order #{short_order_id(order.id)} has been cancelled."
    else:
        message = f"The courier for your order #{short_order_id(order.id)} is being changed. We will share new tracking details soon."
    _send(bridge, order, "Shipment Update", message, {"event": "shipment_cancelled", "mode": mode})


def notify_status_changed(bridge: Optional[NotificationBridge], order: Order, new_status: OrderStatus) -> None:
    template = _STATUS_MESSAGES.get(new_status)
    if template is None:
        return
    title, message = template
    _send(
        bridge,
        order,
        title,
        message.format(ref=short_order_id(order.id)),
        {"event": "status_changed", "status": new_status.value, "courierStatus": order.courier_status},
    )
