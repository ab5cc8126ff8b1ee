"""create_store_order_tables

Revision ID: 5c1e0a7d9b21
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "5c1e0a7d9b21"
down_revision = None
branch_labels = None
depends_on = None


ORDER_STATUS = sa.Enum(
    "pending",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    name="store_order_status_enum",
)
MOVEMENT_TYPE = sa.Enum("sale", "release", name="store_inventory_movement_type_enum")
EVENT_OUTCOME = sa.Enum(
    "applied", "ignored", "observed", name="store_payment_event_outcome_enum"
)
AUDIT_ENTITY = sa.Enum("order", "payment", name="store_audit_entity_type_enum")


def upgrade() -> None:
    op.create_table(
        "store_products",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("stock", sa.Integer(), server_default="0", nullable=False),
        sa.Column("sales", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("stock >= 0", name="product_stock_non_negative"),
        sa.CheckConstraint("sales >= 0", name="product_sales_non_negative"),
        sa.CheckConstraint("price >= 0", name="product_price_non_negative"),
    )

    op.create_table(
        "store_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("order_number", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column(
            "amount_refunded", sa.Numeric(12, 2), server_default="0", nullable=False
        ),
        sa.Column("shipping_street", sa.String(255), nullable=False),
        sa.Column("shipping_city", sa.String(100), nullable=False),
        sa.Column("shipping_postal_code", sa.String(20), nullable=False),
        sa.Column("shipping_country", sa.String(100), nullable=False),
        sa.Column("payment_id", sa.String(255), nullable=True),
        sa.Column("status", ORDER_STATUS, server_default="pending", nullable=False),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("carrier", sa.String(100), nullable=True),
        sa.Column("customer_notes", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_amount >= 0", name="order_total_non_negative"),
        sa.CheckConstraint(
            "amount_refunded >= 0 AND amount_refunded <= total_amount",
            name="order_refund_within_total",
        ),
    )
    op.create_index(
        "ix_store_orders_order_number", "store_orders", ["order_number"], unique=True
    )
    op.create_index(
        "ix_store_orders_payment_id", "store_orders", ["payment_id"], unique=True
    )
    op.create_index("ix_store_orders_user_id", "store_orders", ["user_id"])
    op.create_index(
        "ix_store_orders_user_id_status", "store_orders", ["user_id", "status"]
    )

    op.create_table(
        "store_order_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("store_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "product_id",
            sa.Uuid(),
            sa.ForeignKey("store_products.id"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("quantity > 0", name="order_item_positive_quantity"),
    )
    op.create_index(
        "ix_store_order_items_order_id", "store_order_items", ["order_id"]
    )

    op.create_table(
        "store_inventory_movements",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "product_id",
            sa.Uuid(),
            sa.ForeignKey("store_products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("movement_type", MOVEMENT_TYPE, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(30), nullable=True),
        sa.Column("reference_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("performed_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_store_inventory_movements_product_id",
        "store_inventory_movements",
        ["product_id"],
    )
    op.create_index(
        "ix_store_inventory_movements_reference",
        "store_inventory_movements",
        ["reference_type", "reference_id"],
    )

    op.create_table(
        "store_payment_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.String(255), nullable=False, unique=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=True),
        sa.Column("payment_id", sa.String(255), nullable=True),
        sa.Column("outcome", EVENT_OUTCOME, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("event_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_store_payment_events_order_id", "store_payment_events", ["order_id"]
    )

    op.create_table(
        "store_audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("entity_type", AUDIT_ENTITY, nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("performed_by", sa.String(255), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_store_audit_logs_entity", "store_audit_logs", ["entity_type", "entity_id"]
    )


def downgrade() -> None:
    op.drop_table("store_audit_logs")
    op.drop_table("store_payment_events")
    op.drop_table("store_inventory_movements")
    op.drop_table("store_order_items")
    op.drop_table("store_orders")
    op.drop_table("store_products")

    bind = op.get_bind()
    for enum in (AUDIT_ENTITY, EVENT_OUTCOME, MOVEMENT_TYPE, ORDER_STATUS):
        enum.drop(bind, checkfirst=True)
