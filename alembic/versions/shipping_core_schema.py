"""shipping core schema: orders linkage, shipping_settings, notifications, webhook_events

Revision ID: shipping_core_schema
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


revision = "shipping_core_schema"
down_revision = None
branch_labels = None
depends_on = None

# Shipment linkage on orders; added to an existing storefront table when it is already there
ORDER_LINKAGE_COLUMNS = [
    ("courier_order_id", sa.String()),
    ("courier_shipment_id", sa.String()),
    ("awb_code", sa.String()),
    ("courier_id", sa.Integer()),
    ("courier_name", sa.String()),
    ("courier_status", sa.String()),
    ("label_url", sa.String()),
    ("tracking_url", sa.String()),
    ("estimated_delivery_date", sa.String()),
    ("pickup_scheduled_date", sa.String()),
    ("pickup_token", sa.String()),
    ("cancelled_awb_code", sa.String()),
    ("delivered_date", sa.String()),
    ("last_synced_at", sa.DateTime()),
]


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    tables = set(inspector.get_table_names())

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("role", sa.String(length=8), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "orders" not in tables:
        op.create_table(
            "orders",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False),
            sa.Column("payment_method", sa.String(), nullable=False),
            sa.Column("total", sa.Numeric(10, 2), nullable=False),
            sa.Column("discount_amount", sa.Numeric(10, 2), nullable=True),
            sa.Column("shipping_charges", sa.Numeric(10, 2), nullable=True),
            sa.Column("shipping_address", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
            *[sa.Column(name, type_, nullable=True) for name, type_ in ORDER_LINKAGE_COLUMNS],
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_orders_user_id", "orders", ["user_id"])
        op.create_index("ix_orders_awb_code", "orders", ["awb_code"])
    else:
        existing = {c["name"] for c in inspector.get_columns("orders")}
        for name, type_ in ORDER_LINKAGE_COLUMNS:
            if name not in existing:
                op.add_column("orders", sa.Column(name, type_, nullable=True))
        indexes = {ix["name"] for ix in inspector.get_indexes("orders")}
        if "ix_orders_awb_code" not in indexes:
            op.create_index("ix_orders_awb_code", "orders", ["awb_code"])

    if "order_items" not in tables:
        op.create_table(
            "order_items",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("order_id", sa.String(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
            sa.Column("product_id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=True),
            sa.Column("sku", sa.String(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("price", sa.Numeric(10, 2), nullable=False),
            sa.Column("weight", sa.Numeric(8, 3), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    if "shipping_settings" not in tables:
        op.create_table(
            "shipping_settings",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("api_email", sa.String(), nullable=True),
            sa.Column("api_password_encrypted", sa.String(), nullable=True),
            sa.Column("auth_token_encrypted", sa.String(), nullable=True),
            sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("pickup_location_name", sa.String(), nullable=True),
            sa.Column("pickup_address", sa.String(), nullable=True),
            sa.Column("pickup_address_2", sa.String(), nullable=True),
            sa.Column("pickup_city", sa.String(), nullable=True),
            sa.Column("pickup_state", sa.String(), nullable=True),
            sa.Column("pickup_pincode", sa.String(), nullable=True),
            sa.Column("pickup_phone", sa.String(), nullable=True),
            sa.Column("pickup_email", sa.String(), nullable=True),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("auto_assign_courier", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("preferred_courier_id", sa.Integer(), nullable=True),
            sa.Column("auto_create_order", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("auto_schedule_pickup", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("default_length", sa.Numeric(8, 2), nullable=False, server_default="15"),
            sa.Column("default_breadth", sa.Numeric(8, 2), nullable=False, server_default="10"),
            sa.Column("default_height", sa.Numeric(8, 2), nullable=False, server_default="5"),
            sa.Column("default_weight", sa.Numeric(8, 3), nullable=False, server_default="0.1"),
            sa.Column("webhook_secret", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    if "notifications" not in tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("order_id", sa.String(), nullable=True),
            sa.Column("type", sa.String(length=12), nullable=True),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_order_id", "notifications", ["order_id"])

    if "webhook_events" not in tables:
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("source", sa.String(), nullable=False),
            sa.Column("awb_code", sa.String(), nullable=True),
            sa.Column("topic", sa.String(), nullable=False),
            sa.Column("payload_summary", sa.String(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("error", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
        op.create_index("ix_webhook_events_awb_code", "webhook_events", ["awb_code"])
        op.create_index("ix_webhook_events_topic", "webhook_events", ["topic"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("notifications")
    op.drop_table("shipping_settings")
    # orders / order_items / users belong to the storefront; only drop our columns
    for name, _ in reversed(ORDER_LINKAGE_COLUMNS):
        op.drop_column("orders", name)
