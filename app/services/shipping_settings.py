"""
SettingsStore: the single shipping_settings row (credentials, pickup location, automation flags, cached token).
Secrets are Fernet-encrypted at rest and never leave this module in responses.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import ConfigurationError, ValidationError
from app.models import ShippingSettings
from app.services.credentials import decrypt_optional, encrypt_token
from app.services.token_cache import TokenCache

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = {"length": 15.0, "breadth": 10.0, "height": 5.0, "weight": 0.1}

# Plain columns a PUT may set directly
_PLAIN_FIELDS = (
    "api_email",
    "pickup_location_name",
    "pickup_address",
    "pickup_address_2",
    "pickup_city",
    "pickup_state",
    "pickup_pincode",
    "pickup_phone",
    "pickup_email",
    "enabled",
    "auto_assign_courier",
    "preferred_courier_id",
    "auto_create_order",
    "auto_schedule_pickup",
    "default_length",
    "default_breadth",
    "default_height",
    "default_weight",
    "webhook_secret",
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SettingsStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self) -> Optional[ShippingSettings]:
        return self.db.query(ShippingSettings).order_by(ShippingSettings.created_at.asc()).first()

    def require(self, require_enabled: bool = True) -> ShippingSettings:
        row = self.get()
        if row is None:
            raise ConfigurationError("ShipRocket settings not configured. Please configure in admin settings.")
        if require_enabled and not row.enabled:
            raise ConfigurationError("ShipRocket integration is disabled.")
        return row

    # ---- credentials ----

    def credentials(self, row: Optional[ShippingSettings] = None) -> tuple[str, str]:
        """(email, password) from the row, falling back to SHIPROCKET_EMAIL / SHIPROCKET_PASSWORD."""
        row = row if row is not None else self.get()
        email = (row.api_email if row is not None else None) or settings.SHIPROCKET_EMAIL
        password = decrypt_optional(row.api_password_encrypted if row is not None else None) or settings.SHIPROCKET_PASSWORD
        return (email or "").strip(), password or ""

    def has_credentials(self, row: Optional[ShippingSettings]) -> bool:
        return bool(row is not None and row.api_email and row.api_password_encrypted)

    # ---- cached token ----

    def cached_token(self, row: Optional[ShippingSettings] = None) -> tuple[Optional[str], Optional[datetime]]:
        row = row if row is not None else self.get()
        if row is None:
            return None, None
        return decrypt_optional(row.auth_token_encrypted), _aware(row.token_expires_at)

    def save_token(self, token: str, expires_at: datetime) -> None:
        row = self.get()
        if row is None:
            return
        row.auth_token_encrypted = encrypt_token(token)
        row.token_expires_at = expires_at
        self.db.commit()

    def clear_token(self, row: ShippingSettings) -> None:
        row.auth_token_encrypted = None
        row.token_expires_at = None

    def token_valid(self, row: ShippingSettings) -> bool:
        expires_at = _aware(row.token_expires_at)
        return bool(row.auth_token_encrypted and expires_at and expires_at > datetime.now(timezone.utc))

    # ---- webhook ----

    def webhook_secret(self) -> Optional[str]:
        row = self.get()
        secret = (row.webhook_secret if row is not None else None) or settings.SHIPROCKET_WEBHOOK_SECRET
        return secret or None

    # ---- package ----

    def package_defaults(self, row: Optional[ShippingSettings]) -> dict[str, float]:
        if row is None:
            return dict(DEFAULT_DIMENSIONS)
        return {
            "length": float(row.default_length if row.default_length is not None else DEFAULT_DIMENSIONS["length"]),
            "breadth": float(row.default_breadth if row.default_breadth is not None else DEFAULT_DIMENSIONS["breadth"]),
            "height": float(row.default_height if row.default_height is not None else DEFAULT_DIMENSIONS["height"]),
            "weight": float(row.default_weight if row.default_weight is not None else DEFAULT_DIMENSIONS["weight"]),
        }

    # ---- read / write ----

    def to_response(self, row: Optional[ShippingSettings]) -> dict[str, Any]:
        if row is None:
            return {
                "enabled": False,
                "hasCredentials": False,
                "tokenValid": False,
                "tokenExpiresAt": None,
                "pickupLocation": None,
                "autoAssignCourier": True,
                "preferredCourierId": None,
                "autoCreateOrder": False,
                "autoSchedulePickup": False,
                "defaultDimensions": dict(DEFAULT_DIMENSIONS),
                "hasWebhookSecret": bool(settings.SHIPROCKET_WEBHOOK_SECRET),
            }
        expires_at = _aware(row.token_expires_at)
        return {
            "enabled": bool(row.enabled),
            "hasCredentials": self.has_credentials(row),
            "tokenValid": self.token_valid(row),
            "tokenExpiresAt": expires_at.isoformat() if expires_at else None,
            "pickupLocation": {
                "name": row.pickup_location_name,
                "address": row.pickup_address,
                "address_2": row.pickup_address_2,
                "city": row.pickup_city,
                "state": row.pickup_state,
                "pincode": row.pickup_pincode,
                "phone": row.pickup_phone,
                "email": row.pickup_email,
            }
            if row.pickup_address
            else None,
            "autoAssignCourier": bool(row.auto_assign_courier),
            "preferredCourierId": row.preferred_courier_id,
            "autoCreateOrder": bool(row.auto_create_order),
            "autoSchedulePickup": bool(row.auto_schedule_pickup),
            "defaultDimensions": self.package_defaults(row),
            "hasWebhookSecret": bool(row.webhook_secret or settings.SHIPROCKET_WEBHOOK_SECRET),
        }

    def update(self, data: dict[str, Any], token_cache: Optional[TokenCache] = None) -> ShippingSettings:
        """
        Partial update. The first save must carry api_email and api_password.
        Any credential change drops the cached token in the row and in the process cache.
        """
        row = self.get()
        if row is None:
            if not data.get("api_email") or not data.get("api_password"):
                raise ValidationError("API email and password are required")
            row = ShippingSettings()
            self.db.add(row)

        for field in _PLAIN_FIELDS:
            if field in data:
                setattr(row, field, data[field])
        if "api_password" in data:
            row.api_password_encrypted = encrypt_token(data["api_password"]) if data["api_password"] else None

        if "api_email" in data or "api_password" in data:
            self.clear_token(row)
            if token_cache is not None:
                token_cache.invalidate()
            logger.info("ShipRocket credentials changed; cached token cleared")

        self.db.commit()
        self.db.refresh(row)
        return row
