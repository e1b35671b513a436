"""
StatusReconciler: the one place courier-reported status is written onto an Order.

Webhooks, the tracking endpoint, manual sync and the poller all call apply(), so the same event
produces the same outcome whichever way it arrives:
- courier_status, courier_name, tracking_url, estimated_delivery_date: last write wins, except that a
  terminal courier_status (DELIVERED, CANCELLED, RTO_DELIVERED) is only replaced by another terminal one.
  Unmapped codes and labels are ignored.
- Order.status: only forward (pending < confirmed < processing < shipped < delivered), or to cancelled.
  Written with `WHERE status = <value we read>` so a concurrent change is never clobbered.
- Customer is notified only when Order.status actually changes; replays are silent.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models import Order, OrderStatus
from app.services.notifications import NotificationBridge, notify_status_changed
from app.services.status_mapping import (
    is_forward_progress,
    is_terminal,
    lookup_status,
    lookup_status_label,
)

logger = logging.getLogger(__name__)


@dataclass
class StatusUpdate:
    """Normalized courier event, whatever the source."""
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    courier_name: Optional[str] = None
    etd: Optional[str] = None
    tracking_url: Optional[str] = None
    delivered_date: Optional[str] = None
    source: str = "webhook"


@dataclass
class ReconcileResult:
    order_id: str
    courier_status: Optional[str]
    previous_status: OrderStatus
    order_status: OrderStatus
    status_changed: bool = False
    changed_fields: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.status_changed or bool(self.changed_fields)


def resolve_status(update: StatusUpdate) -> tuple[Optional[str], Optional[OrderStatus]]:
    """
    (courier_status label, target Order.status or None).
    Codes and labels missing from STATUS_MAP resolve to (None, None) so placeholders never reach courier_status.
    """
    mapping = lookup_status(update.status_code) or lookup_status_label(update.status_text)
    if mapping is None:
        return None, None
    return mapping.label, mapping.order_status


class StatusReconciler:
    def __init__(self, db: Session, notifier: Optional[NotificationBridge] = None):
        self.db = db
        self.notifier = notifier

    def apply(self, order: Order, update: StatusUpdate) -> ReconcileResult:
        courier_status, target = resolve_status(update)
        changed: List[str] = []

        def _overwrite(attr: str, value: Optional[str]) -> None:
            if value and getattr(order, attr) != value:
                setattr(order, attr, value)
                changed.append(attr)

        if is_terminal(order.courier_status) and not is_terminal(courier_status):
            # Terminal courier status only gives way to another terminal one
            if courier_status:
                logger.info(
                    "Order %s courier status %s is terminal; ignoring %s from %s",
                    order.id, order.courier_status, courier_status, update.source,
                )
            target = None
        else:
            _overwrite("courier_status", courier_status)
        _overwrite("courier_name", update.courier_name)
        _overwrite("tracking_url", update.tracking_url)
        _overwrite("estimated_delivery_date", update.etd)
        if courier_status == "DELIVERED":
            _overwrite("delivered_date", update.delivered_date)

        previous = order.status
        status_changed = False
        if changed:
            self.db.flush()
        if target is not None and is_forward_progress(previous, target):
            rows = (
                self.db.query(Order)
                .filter(Order.id == order.id, Order.status == previous)
                .update({Order.status: target}, synchronize_session=False)
            )
            status_changed = rows == 1
            if not status_changed:
                logger.info("Order %s status changed concurrently; skipped %s -> %s", order.id, previous, target)
        self.db.commit()
        self.db.refresh(order)

        if status_changed:
            logger.info(
                "Order %s status %s -> %s via %s (courier status %s)",
                order.id, previous.value, target.value, update.source, courier_status,
            )
            notify_status_changed(self.notifier, order, target)
        elif changed:
            logger.debug("Order %s courier fields updated via %s: %s", order.id, update.source, changed)

        return ReconcileResult(
            order_id=order.id,
            courier_status=order.courier_status,
            previous_status=previous,
            order_status=order.status,
            status_changed=status_changed,
            changed_fields=changed,
        )
