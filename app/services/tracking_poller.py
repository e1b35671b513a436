"""
Tracking poller - periodic ShipRocket status pull for shipments in flight.
Covers missed webhooks; every result goes through the same StatusReconciler as the webhook.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.exceptions import ShippingError
from app.models import Order
from app.services.notifications import DatabaseNotificationBridge, NotificationBridge
from app.services.shipping_settings import SettingsStore
from app.services.shiprocket_service import get_shiprocket_client
from app.services.status_mapping import TERMINAL_COURIER_STATUSES
from app.services.status_reconciler import StatusReconciler, StatusUpdate
from app.services.token_cache import TokenCache

logger = logging.getLogger(__name__)


def active_shipments(db: Session, batch_size: int):
    """Orders with an AWB whose courier status is not terminal, least recently synced first."""
    return (
        db.query(Order)
        .filter(
            Order.awb_code.isnot(None),
            or_(Order.courier_status.is_(None), ~Order.courier_status.in_(TERMINAL_COURIER_STATUSES)),
        )
        .order_by(Order.last_synced_at.is_(None).desc(), Order.last_synced_at.asc())
        .limit(batch_size)
        .all()
    )


async def poll_active_shipments(
    db: Session,
    client,
    batch_size: Optional[int] = None,
    notifier: Optional[NotificationBridge] = None,
) -> dict:
    """
    Track each active shipment by AWB and reconcile. Per-order failures are collected, never raised.
    Returns {checked, updated, statusChanged, errors: [{orderId, awb, error}]}.
    """
    reconciler = StatusReconciler(db, notifier)
    orders = active_shipments(db, batch_size or settings.TRACKING_POLL_BATCH_SIZE)
    stats = {"checked": 0, "updated": 0, "statusChanged": 0, "errors": []}
    for order in orders:
        stats["checked"] += 1
        order_id, awb = order.id, order.awb_code
        try:
            tracking = await client.track_by_awb(awb)
        except ShippingError as e:
            logger.warning("Tracking poll failed for order %s (AWB %s): %s", order_id, awb, e)
            stats["errors"].append({"orderId": order_id, "awb": awb, "error": str(e)})
            continue
        try:
            order.last_synced_at = datetime.now(timezone.utc)
            db.flush()
            result = reconciler.apply(
                order,
                StatusUpdate(
                    status_code=tracking.current_status_id or None,
                    status_text=tracking.current_status,
                    courier_name=tracking.courier_name or None,
                    etd=tracking.etd or None,
                    tracking_url=tracking.track_url or None,
                    delivered_date=tracking.delivered_date,
                    source="poller",
                ),
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Tracking poll could not save order %s (AWB %s)", order_id, awb)
            stats["errors"].append({"orderId": order_id, "awb": awb, "error": str(e)})
            continue
        if result.changed:
            stats["updated"] += 1
        if result.status_changed:
            stats["statusChanged"] += 1
    logger.info(
        "Tracking poll: %d checked, %d updated, %d status changes, %d errors",
        stats["checked"], stats["updated"], stats["statusChanged"], len(stats["errors"]),
    )
    return stats


async def tracking_poll_worker(token_cache: TokenCache):
    """Runs forever; started from main.py when TRACKING_POLL_ENABLED is set."""
    logger.info(
        "[TRACKING_POLLER] Starting, first run in %ss, then every %ss",
        settings.TRACKING_POLL_FIRST_DELAY_SEC, settings.TRACKING_POLL_INTERVAL_SEC,
    )
    await asyncio.sleep(settings.TRACKING_POLL_FIRST_DELAY_SEC)
    while True:
        db = SessionLocal()
        try:
            store = SettingsStore(db)
            row = store.get()
            if row is None or not row.enabled:
                logger.debug("[TRACKING_POLLER] ShipRocket integration disabled, skipping")
            else:
                client = get_shiprocket_client(store, token_cache)
                await poll_active_shipments(db, client, notifier=DatabaseNotificationBridge(db))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("[TRACKING_POLLER] Poll pass failed: %s", e)
        finally:
            db.close()
        await asyncio.sleep(settings.TRACKING_POLL_INTERVAL_SEC)
