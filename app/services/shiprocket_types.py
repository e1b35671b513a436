"""
Typed results returned by the ShipRocket gateway.
Raw JSON envelopes are parsed into these models inside shiprocket_service; business code never sees raw dicts.
"""
from typing import List, Optional

from pydantic import BaseModel


class PickupLocation(BaseModel):
    id: Optional[int] = None
    pickup_location: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class CourierQuote(BaseModel):
    courier_id: int
    courier_name: str
    freight_charge: float = 0.0
    cod_charges: float = 0.0
    estimated_delivery_days: Optional[str] = None
    etd: Optional[str] = None
    rating: Optional[float] = None
    is_surface: bool = False

    def total_charge(self, is_cod: bool) -> float:
        return self.freight_charge + (self.cod_charges if is_cod else 0.0)


class ServiceabilityResult(BaseModel):
    available: bool
    couriers: List[CourierQuote] = []


class CreatedOrder(BaseModel):
    courier_order_id: str
    courier_shipment_id: Optional[str] = None
    status: Optional[str] = None
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None


class OrderDetails(BaseModel):
    courier_order_id: str
    shipment_id: Optional[str] = None
    status: Optional[str] = None
    status_code: Optional[int] = None
    awb_code: Optional[str] = None
    courier_id: Optional[int] = None
    courier_name: Optional[str] = None


class AwbAssignment(BaseModel):
    awb_code: str
    courier_id: int
    courier_name: str
    assigned_at: str


class PickupResult(BaseModel):
    scheduled_date: str
    pickup_token: str = ""


class TrackingEvent(BaseModel):
    date: Optional[str] = None
    status: Optional[str] = None
    activity: Optional[str] = None
    location: Optional[str] = None
    status_label: Optional[str] = None


class TrackingResult(BaseModel):
    awb: str
    courier_name: str = ""
    courier_id: Optional[int] = None
    current_status: Optional[str] = None
    current_status_id: Optional[int] = None
    events: List[TrackingEvent] = []
    etd: str = ""
    delivered_date: Optional[str] = None
    track_url: str = ""
