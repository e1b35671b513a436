"""
ShipRocket tracking webhook processing.

Every delivery is acknowledged with 200: ShipRocket retries on anything else, and a retry storm
is worse than a logged rejection. Business outcomes go in the body as {success, ...}.
"""
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Order, WebhookEvent
from app.services.notifications import NotificationBridge
from app.services.shipping_settings import SettingsStore
from app.services.status_reconciler import StatusReconciler, StatusUpdate

logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "shiprocket"
SECRET_HEADER = "x-api-key"


def verify_webhook_secret(expected: Optional[str], provided: Optional[str]) -> bool:
    """No configured secret accepts everything."""
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(expected.strip(), provided.strip())


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def parse_status_update(payload: dict[str, Any]) -> StatusUpdate:
    return StatusUpdate(
        status_code=_int_or_none(payload.get("current_status_id") or payload.get("shipment_status_id")),
        status_text=payload.get("current_status") or payload.get("shipment_status"),
        courier_name=payload.get("courier_name") or None,
        etd=payload.get("etd") or None,
        tracking_url=payload.get("track_url") or payload.get("tracking_url") or None,
        delivered_date=payload.get("delivered_date") or None,
        source="webhook",
    )


def _record_event(db: Session, awb: Optional[str], topic: str, payload: dict[str, Any]) -> WebhookEvent:
    summary = None
    if payload.get("order_id") is not None:
        summary = f"order_id={payload.get('order_id')}"
    event = WebhookEvent(
        source=WEBHOOK_SOURCE,
        awb_code=awb,
        topic=topic or "unknown",
        payload_summary=summary,
    )
    db.add(event)
    db.commit()
    return event


class WebhookIngress:
    def __init__(self, db: Session, notifier: Optional[NotificationBridge] = None):
        self.db = db
        self.store = SettingsStore(db)
        self.reconciler = StatusReconciler(db, notifier)

    def handle(self, payload: Any, api_key: Optional[str]) -> dict[str, Any]:
        try:
            return self._handle(payload, api_key)
        except Exception as e:
            logger.exception("ShipRocket webhook processing failed: %s", e)
            self.db.rollback()
            return {"success": False, "error": "Processing failed"}

    def _handle(self, payload: Any, api_key: Optional[str]) -> dict[str, Any]:
        if not verify_webhook_secret(self.store.webhook_secret(), api_key):
            logger.warning("ShipRocket webhook rejected: invalid %s header", SECRET_HEADER)
            return {"success": False, "error": "Unauthorized"}
        if not isinstance(payload, dict):
            logger.warning("ShipRocket webhook: body is not a JSON object")
            return {"success": False, "error": "Invalid payload"}

        awb = str(payload.get("awb") or "").strip()
        if not awb:
            logger.warning("ShipRocket webhook without AWB, keys=%s", sorted(payload.keys()))
            return {"success": True, "message": "No AWB in payload"}

        update = parse_status_update(payload)
        event = _record_event(self.db, awb, str(update.status_text or update.status_code or ""), payload)

        order = self.db.query(Order).filter(Order.awb_code == awb).first()
        if order is None:
            logger.info("ShipRocket webhook for unknown AWB %s", awb)
            event.error = "order not found"
            event.processed_at = datetime.now(timezone.utc)
            self.db.commit()
            return {"success": True, "message": "Order not found"}

        try:
            result = self.reconciler.apply(order, update)
        except Exception as e:
            self.db.rollback()
            event.error = str(e)[:500]
            self.db.commit()
            raise
        event.processed_at = datetime.now(timezone.utc)
        self.db.commit()

        logger.info(
            "ShipRocket webhook AWB %s -> courier status %s, order status %s%s",
            awb, result.courier_status, result.order_status.value, " (changed)" if result.status_changed else "",
        )
        return {
            "success": True,
            "orderId": order.id,
            "courierStatus": result.courier_status,
            "orderStatus": result.order_status.value,
            "statusChanged": result.status_changed,
        }
