"""Store commerce models: orders, order items, audit logs."""

import random
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.store_service.errors import InvalidTransition
from services.store_service.models.enums import (
    AuditEntityType,
    OrderStatus,
    enum_values,
)
from sqlalchemy import JSON, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# ORDER STATE MACHINE
# ============================================================================

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})
FULFILLMENT_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """Orders."""

    __tablename__ = "store_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )

    # Customer
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Pricing, fixed at creation
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount_refunded: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), server_default="0", nullable=False
    )

    # Shipping address
    shipping_street: Mapped[str] = mapped_column(String(255), nullable=False)
    shipping_city: Mapped[str] = mapped_column(String(100), nullable=False)
    shipping_postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    shipping_country: Mapped[str] = mapped_column(String(100), nullable=False)

    # Payment intent reference (set at most once)
    payment_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, index=True, nullable=True
    )

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="store_order_status_enum",
        ),
        default=OrderStatus.PENDING,
        server_default="pending",
        nullable=False,
    )

    # Fulfillment
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Notes
    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps (each set at most once)
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="order_total_non_negative"),
        CheckConstraint(
            "amount_refunded >= 0 AND amount_refunded <= total_amount",
            name="order_refund_within_total",
        ),
        Index("ix_store_orders_user_id_status", "user_id", "status"),
    )

    # Relationships
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    @staticmethod
    def generate_order_number() -> str:
        """Generate a unique order number like SS-20260104-A1B2C."""
        date_part = utc_now().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=5)
        )
        return f"SS-{date_part}-{random_part}"

    @property
    def shipping_address(self) -> dict:
        return {
            "street": self.shipping_street,
            "city": self.shipping_city,
            "postal_code": self.shipping_postal_code,
            "country": self.shipping_country,
        }

    @property
    def refundable_amount(self) -> Decimal:
        return Decimal(self.total_amount) - Decimal(self.amount_refunded or 0)

    @property
    def is_cancellable(self) -> bool:
        return self.status in CANCELLABLE_STATUSES and self.cancelled_at is None

    def ensure_cancellable(self) -> None:
        if not self.is_cancellable:
            raise InvalidTransition(
                f"Cannot cancel order in status '{self.status.value}'"
            )

    def mark_paid(self) -> bool:
        """Move a pending order to processing. Returns False when nothing changed."""
        if self.status != OrderStatus.PENDING:
            return False
        self.status = OrderStatus.PROCESSING
        if self.paid_at is None:
            self.paid_at = utc_now()
        return True

    def advance_fulfillment(
        self,
        new_status: OrderStatus,
        *,
        tracking_number: Optional[str] = None,
        carrier: Optional[str] = None,
    ) -> bool:
        """
        Apply an admin shipping/delivery update.

        Re-applying the current status only refreshes tracking metadata; the
        matching timestamp is never overwritten. Returns True when the status
        changed.
        """
        if new_status not in FULFILLMENT_STATUSES:
            raise InvalidTransition(
                f"Cannot set order status to '{new_status.value}' directly"
            )

        changed = False
        if self.status != new_status:
            if new_status not in ALLOWED_TRANSITIONS[self.status]:
                raise InvalidTransition(
                    f"Cannot move order from '{self.status.value}' to '{new_status.value}'"
                )
            self.status = new_status
            changed = True

        now = utc_now()
        if new_status == OrderStatus.SHIPPED and self.shipped_at is None:
            self.shipped_at = now
        if new_status == OrderStatus.DELIVERED and self.delivered_at is None:
            self.delivered_at = now

        if tracking_number:
            self.tracking_number = tracking_number
        if carrier:
            self.carrier = carrier
        return changed

    def mark_cancelled(self) -> None:
        """Terminal transition. Stock release is the caller's job."""
        self.ensure_cancellable()
        self.status = OrderStatus.CANCELLED
        if self.cancelled_at is None:
            self.cancelled_at = utc_now()

    def __repr__(self):
        return f"<Order {self.order_number} status={self.status}>"


class OrderItem(Base):
    """Order line items (snapshot at order time)."""

    __tablename__ = "store_order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_products.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Snapshot at order time (products may change)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="order_item_positive_quantity"),
    )

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_name} qty={self.quantity}>"


# ============================================================================
# AUDIT LOG
# ============================================================================


class StoreAuditLog(Base):
    """Audit trail for order and payment changes."""

    __tablename__ = "store_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[AuditEntityType] = mapped_column(
        SAEnum(
            AuditEntityType,
            values_callable=enum_values,
            name="store_audit_entity_type_enum",
        ),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index("ix_store_audit_logs_entity", "entity_type", "entity_id"),
    )

    def __repr__(self):
        return f"<StoreAuditLog {self.entity_type}:{self.action}>"
