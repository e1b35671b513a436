"""
Formatting and validation helpers for ShipRocket payloads (Indian addresses, phones, package sizing).
"""
import math
import re
from datetime import datetime
from typing import Iterable, Optional

from app.exceptions import AggregatorError, AuthenticationError

_PINCODE_RE = re.compile(r"^[1-9][0-9]{5}$")
_PHONE_RE = re.compile(r"^[6-9][0-9]{9}$")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")

ITEMS_PER_LAYER = 4

INDIAN_STATES = [
    "Andaman and Nicobar Islands",
    "Andhra Pradesh",
    "Arunachal Pradesh",
    "Assam",
    "Bihar",
    "Chandigarh",
    "Chhattisgarh",
    "Dadra and Nagar Haveli and Daman and Diu",
    "Delhi",
    "Goa",
    "Gujarat",
    "Haryana",
    "Himachal Pradesh",
    "Jammu and Kashmir",
    "Jharkhand",
    "Karnataka",
    "Kerala",
    "Ladakh",
    "Lakshadweep",
    "Madhya Pradesh",
    "Maharashtra",
    "Manipur",
    "Meghalaya",
    "Mizoram",
    "Nagaland",
    "Odisha",
    "Puducherry",
    "Punjab",
    "Rajasthan",
    "Sikkim",
    "Tamil Nadu",
    "Telangana",
    "Tripura",
    "Uttar Pradesh",
    "Uttarakhand",
    "West Bengal",
]
_STATES_BY_LOWER = {s.lower(): s for s in INDIAN_STATES}


def format_order_date(value: Optional[datetime] = None) -> str:
    """ShipRocket order_date: YYYY-MM-DD HH:MM"""
    return (value or datetime.now()).strftime("%Y-%m-%d %H:%M")


def aggregator_order_id(order_id: str) -> str:
    """ShipRocket order_id: alphanumeric, at most 20 characters."""
    return _NON_ALNUM_RE.sub("", order_id or "")[:20]


def calculate_order_weight(items: Iterable[tuple[int, Optional[float]]], default_weight: float = 0.1) -> float:
    """
    Total shipment weight in kg from (quantity, unit_weight) pairs.
    Items without a weight count as default_weight; never below one default unit.
    """
    total = 0.0
    for quantity, weight in items:
        total += (weight or default_weight) * (quantity or 0)
    return round(max(total, default_weight), 2)


def calculate_package_dimensions(item_count: int, length: float, breadth: float, height: float) -> dict[str, float]:
    """Items stack four to a layer; only the height grows."""
    layers = max(math.ceil(item_count / ITEMS_PER_LAYER), 1)
    return {"length": length, "breadth": breadth, "height": round(height * layers, 2)}


def split_name(full_name: Optional[str]) -> tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "Customer", ""
    return parts[0], " ".join(parts[1:])


def is_valid_pincode(pincode: Optional[str]) -> bool:
    return bool(pincode) and bool(_PINCODE_RE.match(pincode.strip()))


def is_valid_phone(phone: Optional[str]) -> bool:
    if not phone:
        return False
    cleaned = re.sub(r"\s+", "", phone)
    if cleaned.startswith("+91"):
        cleaned = cleaned[3:]
    return bool(_PHONE_RE.match(cleaned))


def clean_phone_number(phone: Optional[str]) -> str:
    """Digits only, country code dropped, last 10 digits."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 12 and digits.startswith("91"):
        return digits[2:]
    return digits[-10:]


def truncate_address(address: Optional[str], max_length: int = 80) -> str:
    address = address or ""
    if len(address) <= max_length:
        return address
    return address[: max_length - 3] + "..."


def truncate_city(city: Optional[str], max_length: int = 30) -> str:
    return (city or "")[:max_length]


def get_delivery_text(days: Optional[str]) -> str:
    if not days:
        return "Delivery date will be confirmed"
    match = re.match(r"\s*(\d+)", str(days))
    if not match:
        return f"Delivery in {days} days"
    lower = int(match.group(1))
    if lower <= 2:
        return "Express Delivery (1-2 days)"
    if lower <= 4:
        return "Standard Delivery (3-4 days)"
    return f"Delivery in {days} days"


def is_valid_state(state: Optional[str]) -> bool:
    return bool(state) and state.strip().lower() in _STATES_BY_LOWER


def normalize_state(state: Optional[str]) -> str:
    if not state:
        return ""
    return _STATES_BY_LOWER.get(state.strip().lower(), state.strip())


def friendly_error_message(error: Exception) -> str:
    """Admin-readable text for an aggregator failure."""
    if isinstance(error, AuthenticationError):
        return "ShipRocket authentication failed. Please check your API credentials."
    if not isinstance(error, AggregatorError):
        return str(error) or "An unexpected error occurred with shipping service."
    message = str(error).lower()
    if "401" in message or "authentication" in message:
        return "ShipRocket authentication failed. Please check your API credentials."
    if "pincode" in message or "serviceability" in message:
        return "Delivery not available to this pincode."
    if "phone" in message:
        return "Invalid phone number format. Please use 10-digit Indian mobile number."
    if "address" in message:
        return "Address is too long or invalid. Please shorten the address."
    if "order_id" in message or "duplicate" in message:
        return "This order has already been processed in ShipRocket."
    if "weight" in message:
        return "Package weight mismatch. Please verify package dimensions."
    return str(error)
