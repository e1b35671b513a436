"""
SQLAlchemy models for the shipping core.
Orders and order items are owned by the storefront; this service only writes the shipment-linkage columns
and (guarded) lifecycle status. All model and enum definitions live here to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Enum as SQLEnum, JSON, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum
import uuid


def _values(enum_cls):
    return [member.value for member in enum_cls]


# Enums
class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    CUSTOMER = "CUSTOMER"

class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentMethod(str, enum.Enum):
    COD = "cod"
    PREPAID = "prepaid"
    UPI = "upi"
    CARD = "card"

class NotificationType(str, enum.Enum):
    ORDER_STATUS = "order_status"
    SHIPPING = "shipping"
    SYSTEM = "system"


# Models
class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(SQLEnum(UserRole, native_enum=False), default=UserRole.CUSTOMER)
    created_at = Column("created_at", DateTime, server_default=func.now())


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column("user_id", String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(
        SQLEnum(OrderStatus, native_enum=False, values_callable=_values),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    payment_method = Column("payment_method", String, nullable=False, default=PaymentMethod.PREPAID.value)
    total = Column("total", Numeric(10, 2), nullable=False)
    discount_amount = Column("discount_amount", Numeric(10, 2), default=0)
    shipping_charges = Column("shipping_charges", Numeric(10, 2), nullable=True)
    # {fullName, email, phone, address, address2, city, state, pincode}
    shipping_address = Column("shipping_address", JSON, nullable=False)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    # Shipment linkage (nullable until populated)
    courier_order_id = Column("courier_order_id", String, nullable=True)
    courier_shipment_id = Column("courier_shipment_id", String, nullable=True)
    awb_code = Column("awb_code", String, nullable=True, index=True)
    courier_id = Column("courier_id", Integer, nullable=True)
    courier_name = Column("courier_name", String, nullable=True)
    courier_status = Column("courier_status", String, nullable=True)
    label_url = Column("label_url", String, nullable=True)
    tracking_url = Column("tracking_url", String, nullable=True)
    estimated_delivery_date = Column("estimated_delivery_date", String, nullable=True)
    pickup_scheduled_date = Column("pickup_scheduled_date", String, nullable=True)
    pickup_token = Column("pickup_token", String, nullable=True)
    # AWB released by the last shipment-level cancel; order details may keep echoing it
    cancelled_awb_code = Column("cancelled_awb_code", String, nullable=True)
    delivered_date = Column("delivered_date", String, nullable=True)
    last_synced_at = Column("last_synced_at", DateTime, nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column("product_id", String, nullable=False)
    name = Column(String, nullable=True)
    sku = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column("price", Numeric(10, 2), nullable=False)
    weight = Column("weight", Numeric(8, 3), nullable=True)  # kg per unit

    order = relationship("Order", back_populates="items")


class ShippingSettings(Base):
    """Single logical row: aggregator credentials, pickup location, automation flags, cached token."""
    __tablename__ = "shipping_settings"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    api_email = Column("api_email", String, nullable=True)
    api_password_encrypted = Column("api_password_encrypted", String, nullable=True)
    auth_token_encrypted = Column("auth_token_encrypted", String, nullable=True)
    token_expires_at = Column("token_expires_at", DateTime(timezone=True), nullable=True)

    pickup_location_name = Column("pickup_location_name", String, nullable=True)
    pickup_address = Column("pickup_address", String, nullable=True)
    pickup_address_2 = Column("pickup_address_2", String, nullable=True)
    pickup_city = Column("pickup_city", String, nullable=True)
    pickup_state = Column("pickup_state", String, nullable=True)
    pickup_pincode = Column("pickup_pincode", String, nullable=True)
    pickup_phone = Column("pickup_phone", String, nullable=True)
    pickup_email = Column("pickup_email", String, nullable=True)

    enabled = Column("enabled", Boolean, default=False, nullable=False)
    auto_assign_courier = Column("auto_assign_courier", Boolean, default=True, nullable=False)
    preferred_courier_id = Column("preferred_courier_id", Integer, nullable=True)
    auto_create_order = Column("auto_create_order", Boolean, default=False, nullable=False)
    auto_schedule_pickup = Column("auto_schedule_pickup", Boolean, default=False, nullable=False)

    default_length = Column("default_length", Numeric(8, 2), default=15, nullable=False)
    default_breadth = Column("default_breadth", Numeric(8, 2), default=10, nullable=False)
    default_height = Column("default_height", Numeric(8, 2), default=5, nullable=False)
    default_weight = Column("default_weight", Numeric(8, 3), default=0.1, nullable=False)

    webhook_secret = Column("webhook_secret", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column("user_id", String, nullable=False, index=True)
    order_id = Column("order_id", String, nullable=True, index=True)
    type = Column(SQLEnum(NotificationType, native_enum=False, values_callable=_values), default=NotificationType.SHIPPING)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)
    read = Column("read", Boolean, default=False, nullable=False)
    created_at = Column("created_at", DateTime, server_default=func.now())


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    source = Column("source", String, nullable=False, index=True)
    awb_code = Column("awb_code", String, nullable=True, index=True)
    topic = Column("topic", String, nullable=False, index=True)
    payload_summary = Column("payload_summary", String, nullable=True)
    processed_at = Column("processed_at", DateTime, nullable=True)
    error = Column("error", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
