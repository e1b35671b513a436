"""
ShipRocket status vocabulary and its effect on the local order lifecycle.

STATUS_MAP is plain data: add a code here to start recognising it, no branching elsewhere.
Only a handful of codes move Order.status; the rest only update courier_status.
"""
from typing import NamedTuple, Optional

from app.models import OrderStatus


class StatusMapping(NamedTuple):
    label: str
    order_status: Optional[OrderStatus] = None


STATUS_MAP: dict[int, StatusMapping] = {
    1: StatusMapping("AWB_ASSIGNED"),
    2: StatusMapping("LABEL_GENERATED"),
    3: StatusMapping("PICKUP_SCHEDULED"),
    4: StatusMapping("PICKUP_QUEUED"),
    5: StatusMapping("MANIFEST_GENERATED"),
    6: StatusMapping("SHIPPED", OrderStatus.SHIPPED),
    7: StatusMapping("DELIVERED", OrderStatus.DELIVERED),
    8: StatusMapping("CANCELLED", OrderStatus.CANCELLED),
    9: StatusMapping("RTO_INITIATED"),
    10: StatusMapping("RTO_DELIVERED"),
    11: StatusMapping("PENDING"),
    12: StatusMapping("LOST"),
    13: StatusMapping("PICKUP_ERROR"),
    14: StatusMapping("RTO_ACKNOWLEDGED"),
    15: StatusMapping("PICKUP_RESCHEDULED"),
    16: StatusMapping("CANCELLATION_REQUESTED"),
    17: StatusMapping("OUT_FOR_DELIVERY"),
    18: StatusMapping("IN_TRANSIT", OrderStatus.SHIPPED),
    19: StatusMapping("OUT_FOR_PICKUP"),
    20: StatusMapping("PICKUP_EXCEPTION"),
    21: StatusMapping("UNDELIVERED"),
    22: StatusMapping("DELAYED"),
    23: StatusMapping("PARTIAL_DELIVERED"),
    24: StatusMapping("DESTROYED"),
    25: StatusMapping("DAMAGED"),
    26: StatusMapping("FULFILLED"),
    38: StatusMapping("REACHED_DESTINATION_HUB"),
    39: StatusMapping("MISROUTED"),
    40: StatusMapping("RTO_IN_TRANSIT"),
    41: StatusMapping("RTO_OUT_FOR_DELIVERY"),
    42: StatusMapping("RTO_UNDELIVERED"),
    43: StatusMapping("PICKED_UP", OrderStatus.SHIPPED),
    44: StatusMapping("SELF_FULFILLED"),
    45: StatusMapping("DISPOSED_OFF"),
    46: StatusMapping("CANCELLED_BY_USER"),
    47: StatusMapping("RTO_LOCK"),
    48: StatusMapping("STUCK_IN_TRANSIT"),
    49: StatusMapping("PICKED_UP_CUSTOM_DELIVERED"),
    50: StatusMapping("RTO_NDR"),
}

# Forward-only ordering for Order.status; cancelled sits outside it
ORDER_STATUS_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

# courier_status values after which only re-reads are allowed
TERMINAL_COURIER_STATUSES = frozenset({"DELIVERED", "CANCELLED", "CANCELED", "RTO_DELIVERED"})

# The courier physically holds the parcel: cancelling needs force
DANGEROUS_COURIER_STATUSES = frozenset({"PICKED_UP", "IN_TRANSIT", "OUT_FOR_DELIVERY", "REACHED_DESTINATION_HUB"})

PICKUP_BLOCKED_COURIER_STATUSES = frozenset({"CANCELED", "CANCELLED", "RTO", "RTO_DELIVERED", "DELIVERED"})

AUTO_AWB_SKIP_COURIER_STATUSES = frozenset({"CANCELED", "CANCELLED", "RTO", "DELIVERED"})

# courier_status after a shipment-level cancel; the order can be reassigned
COURIER_STATUS_NEW = "NEW"

CUSTOMER_STATUS_LABELS = {
    "AWB_ASSIGNED": "Tracking Number Assigned",
    "LABEL_GENERATED": "Shipping Label Ready",
    "PICKUP_SCHEDULED": "Pickup Scheduled",
    "PICKUP_QUEUED": "Awaiting Pickup",
    "MANIFEST_GENERATED": "Manifest Created",
    "SHIPPED": "Shipped",
    "PICKED_UP": "Picked Up by Courier",
    "IN_TRANSIT": "In Transit",
    "OUT_FOR_DELIVERY": "Out for Delivery",
    "DELIVERED": "Delivered",
    "CANCELLED": "Cancelled",
    "RTO_INITIATED": "Returning to Seller",
    "RTO_IN_TRANSIT": "Return in Transit",
    "RTO_DELIVERED": "Returned to Seller",
    "UNDELIVERED": "Delivery Attempt Failed",
    "DELAYED": "Delayed",
    "REACHED_DESTINATION_HUB": "Reached Destination Hub",
}


def normalize_courier_status(status: Optional[str]) -> str:
    """'In Transit' / 'in-transit' / 'IN_TRANSIT' -> 'IN_TRANSIT'."""
    if not status:
        return ""
    return "_".join(status.strip().upper().replace("-", " ").split())


_BY_LABEL = {mapping.label: mapping for mapping in STATUS_MAP.values()}
_LABEL_ALIASES = {"CANCELED": "CANCELLED"}


def lookup_status(code: Optional[int]) -> Optional[StatusMapping]:
    if code is None:
        return None
    try:
        return STATUS_MAP.get(int(code))
    except (TypeError, ValueError):
        return None


def lookup_status_label(label: Optional[str]) -> Optional[StatusMapping]:
    """Reverse lookup for sources that only give a status name (order details, live tracking)."""
    key = normalize_courier_status(label)
    return _BY_LABEL.get(_LABEL_ALIASES.get(key, key))


def is_forward_progress(current: Optional[OrderStatus], new: OrderStatus) -> bool:
    """True if moving current -> new is allowed: cancelled always, otherwise strictly forward."""
    if new == OrderStatus.CANCELLED:
        return current != OrderStatus.CANCELLED
    if current == OrderStatus.CANCELLED:
        return False
    if current is None:
        return True
    return ORDER_STATUS_SEQUENCE.index(new) > ORDER_STATUS_SEQUENCE.index(current)


def is_terminal(courier_status: Optional[str]) -> bool:
    return normalize_courier_status(courier_status) in TERMINAL_COURIER_STATUSES


def is_dangerous(courier_status: Optional[str]) -> bool:
    return normalize_courier_status(courier_status) in DANGEROUS_COURIER_STATUSES


def format_status_label(status: Optional[str]) -> str:
    """Customer-facing label; unknown codes fall back to Title Case."""
    if not status:
        return "Processing"
    key = normalize_courier_status(status)
    if key in CUSTOMER_STATUS_LABELS:
        return CUSTOMER_STATUS_LABELS[key]
    return " ".join(word.capitalize() for word in key.split("_"))
