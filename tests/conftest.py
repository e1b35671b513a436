"""
Shared fixtures: in-memory SQLite, users/orders/settings factories, a fake ShipRocket gateway, TestClient.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-pytest-0")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

from decimal import Decimal
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from app.auth import create_access_token
from app.database import Base, get_db
from app.http.dependencies import get_gateway_provider
from app.models import Order, OrderItem, OrderStatus, ShippingSettings, User, UserRole
from app.services.credentials import encrypt_token
from app.services.shiprocket_types import (
    AwbAssignment,
    CourierQuote,
    CreatedOrder,
    OrderDetails,
    PickupLocation,
    PickupResult,
    ServiceabilityResult,
    TrackingEvent,
    TrackingResult,
)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


class FakeGateway:
    """In-memory ShipRocket: deterministic answers, per-method failure injection via `fail`."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail: dict = {}
        self.locations = [PickupLocation(id=1, pickup_location="Primary", pin_code="110001")]
        self.quotes = [
            CourierQuote(courier_id=1, courier_name="Delhivery", freight_charge=100, cod_charges=20, estimated_delivery_days="3-5"),
            CourierQuote(courier_id=2, courier_name="Xpressbees", freight_charge=90, cod_charges=40, estimated_delivery_days="2"),
        ]
        self.created = CreatedOrder(courier_order_id="SR1001", courier_shipment_id="SH2001", status="NEW")
        self.details = OrderDetails(courier_order_id="SR1001", shipment_id="SH2001", status="NEW")
        self.tracking = TrackingResult(
            awb="",
            courier_name="Delhivery",
            courier_id=1,
            current_status="IN TRANSIT",
            current_status_id=18,
            events=[TrackingEvent(date="2026-10-18 09:00", status="IN TRANSIT", activity="Departed hub", location="Delhi")],
            etd="2026-10-21",
            track_url="https://shiprocket.co/tracking/AWB",
        )
        self.awb_counter = 0
        self.channel_orders: dict = {}
        self.last_payload: Optional[dict] = None

    def _record(self, name: str, *args):
        self.calls.append((name, args))
        if name in self.fail:
            raise self.fail[name]

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def get_pickup_locations(self):
        self._record("get_pickup_locations")
        return self.locations

    async def check_serviceability(self, pickup_pincode, delivery_pincode, weight_kg, is_cod=False, declared_value=None):
        self._record("check_serviceability", pickup_pincode, delivery_pincode, weight_kg, is_cod)
        return ServiceabilityResult(available=bool(self.quotes), couriers=list(self.quotes))

    async def create_order(self, payload):
        self._record("create_order", payload)
        self.last_payload = payload
        return self.created

    async def get_order_details(self, courier_order_id):
        self._record("get_order_details", courier_order_id)
        return self.details

    async def find_order_by_channel_id(self, channel_order_id):
        self._record("find_order_by_channel_id", channel_order_id)
        return self.channel_orders.get(channel_order_id)

    async def generate_awb(self, shipment_id, courier_id=None):
        self._record("generate_awb", shipment_id, courier_id)
        self.awb_counter += 1
        quote = next((q for q in self.quotes if q.courier_id == courier_id), None)
        return AwbAssignment(
            awb_code=f"AWB{self.awb_counter:04d}",
            courier_id=courier_id or 1,
            courier_name=quote.courier_name if quote else "Delhivery",
            assigned_at="2026-10-18 10:00:00",
        )

    async def schedule_pickup(self, shipment_ids):
        self._record("schedule_pickup", shipment_ids)
        return PickupResult(scheduled_date="2026-10-19", pickup_token="PK123")

    async def generate_label(self, shipment_ids):
        self._record("generate_label", shipment_ids)
        return f"https://labels.example/{shipment_ids[0]}.pdf"

    async def generate_manifest(self, shipment_ids):
        self._record("generate_manifest", shipment_ids)
        return f"https://manifests.example/{shipment_ids[0]}.pdf"

    async def cancel_order(self, courier_order_ids):
        self._record("cancel_order", courier_order_ids)
        return {"status": 200}

    async def cancel_shipment(self, awb_codes):
        self._record("cancel_shipment", awb_codes)
        return {"status": 200}

    async def track_by_awb(self, awb_code):
        self._record("track_by_awb", awb_code)
        return self.tracking.copy(update={"awb": awb_code})


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def admin_user(db_session):
    user = User(name="Admin", email="admin@example.com", role=UserRole.ADMIN)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def customer_user(db_session):
    user = User(name="Asha Rao", email="asha@example.com", role=UserRole.CUSTOMER)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {create_access_token(data={'sub': admin_user.email})}"}


@pytest.fixture
def customer_headers(customer_user):
    return {"Authorization": f"Bearer {create_access_token(data={'sub': customer_user.email})}"}


@pytest.fixture
def shipping_settings(db_session):
    row = ShippingSettings(
        api_email="ops@example.com",
        api_password_encrypted=encrypt_token("sr-password"),
        pickup_location_name="Primary",
        pickup_address="12 Warehouse Road",
        pickup_city="New Delhi",
        pickup_state="Delhi",
        pickup_pincode="110001",
        pickup_phone="9876543210",
        enabled=True,
        auto_assign_courier=False,
        auto_schedule_pickup=False,
    )
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture
def make_order(db_session, customer_user):
    def _make(
        status: OrderStatus = OrderStatus.PENDING,
        payment_method: str = "cod",
        total: str = "1000.00",
        shipping_charges: str = "100.00",
        **linkage,
    ) -> Order:
        order = Order(
            user_id=customer_user.id,
            status=status,
            payment_method=payment_method,
            total=Decimal(total),
            discount_amount=Decimal("0"),
            shipping_charges=Decimal(shipping_charges),
            shipping_address={
                "fullName": "Asha Rao",
                "email": "asha@example.com",
                "phone": "+91 98765 43210",
                "address": "221 MG Road",
                "address2": "Near Metro",
                "city": "Bengaluru",
                "state": "karnataka",
                "pincode": "560001",
            },
            **linkage,
        )
        db_session.add(order)
        db_session.flush()
        db_session.add(
            OrderItem(order_id=order.id, product_id="prod-1", name="Wooden Puzzle", sku="PUZ-01", quantity=2, price=Decimal("450.00"))
        )
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def client(db_session, fake_gateway):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_provider] = lambda: (lambda: fake_gateway)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
