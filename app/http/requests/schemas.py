"""
Pydantic schemas for request validation (Http/Requests).
Field names follow the admin UI's JSON (camelCase).
"""
import re
from typing import Optional

from pydantic import BaseModel, Field, validator


# Shipment Schemas
class AssignAwbRequest(BaseModel):
    courierId: Optional[int] = None
    selectCheapest: bool = False


class CancelShipmentRequest(BaseModel):
    mode: str = "order"
    force: bool = False

    @validator("mode")
    def validate_mode(cls, v):
        v = (v or "order").strip().lower()
        if v not in ("order", "shipment"):
            raise ValueError("mode must be 'order' or 'shipment'")
        return v


class ServiceabilityRequest(BaseModel):
    deliveryPincode: str
    weight: Optional[float] = Field(None, gt=0)
    isCOD: bool = False
    declaredValue: Optional[float] = Field(None, ge=0)

    @validator("deliveryPincode")
    def strip_pincode(cls, v):
        return (v or "").strip()


# Shipping Settings Schemas
class PickupLocationUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    address_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @validator("pincode")
    def validate_pincode(cls, v):
        if v is not None and not re.match(r"^[1-9][0-9]{5}$", v.strip()):
            raise ValueError("Invalid pincode format. Must be 6 digits.")
        return v.strip() if v is not None else v


class PackageDimensions(BaseModel):
    length: Optional[float] = Field(None, gt=0)
    breadth: Optional[float] = Field(None, gt=0)
    height: Optional[float] = Field(None, gt=0)
    weight: Optional[float] = Field(None, gt=0)


class ShippingSettingsUpdate(BaseModel):
    apiEmail: Optional[str] = None
    apiPassword: Optional[str] = None
    enabled: Optional[bool] = None
    pickupLocation: Optional[PickupLocationUpdate] = None
    autoAssignCourier: Optional[bool] = None
    preferredCourierId: Optional[int] = None
    autoCreateOrder: Optional[bool] = None
    autoSchedulePickup: Optional[bool] = None
    defaultDimensions: Optional[PackageDimensions] = None
    webhookSecret: Optional[str] = None

    @validator("apiEmail")
    def validate_email(cls, v):
        if v is None:
            return v
        if "@" not in v or len(v.split("@")) != 2:
            raise ValueError("Invalid email format")
        return v.lower().strip()

    def to_store_fields(self) -> dict:
        """Only the keys the caller actually sent, as shipping_settings column names."""
        sent = self.dict(exclude_unset=True)
        data = {}
        plain = {
            "apiEmail": "api_email",
            "apiPassword": "api_password",
            "enabled": "enabled",
            "autoAssignCourier": "auto_assign_courier",
            "preferredCourierId": "preferred_courier_id",
            "autoCreateOrder": "auto_create_order",
            "autoSchedulePickup": "auto_schedule_pickup",
            "webhookSecret": "webhook_secret",
        }
        for key, column in plain.items():
            if key in sent:
                data[column] = sent[key]
        for key, value in (sent.get("pickupLocation") or {}).items():
            data["pickup_location_name" if key == "name" else f"pickup_{key}"] = value
        for key, value in (sent.get("defaultDimensions") or {}).items():
            if value is not None:
                data[f"default_{key}"] = value
        return data


class ConnectionTestRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
