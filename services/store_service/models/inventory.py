"""Store inventory models: audit trail for stock changes."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.store_service.models.enums import InventoryMovementType, enum_values
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# INVENTORY MODELS
# ============================================================================


class InventoryMovement(Base):
    """Audit trail for inventory changes."""

    __tablename__ = "store_inventory_movements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_products.id", ondelete="CASCADE"),
        nullable=False,
    )

    movement_type: Mapped[InventoryMovementType] = mapped_column(
        SAEnum(
            InventoryMovementType,
            values_callable=enum_values,
            name="store_inventory_movement_type_enum",
        ),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive = add, negative = subtract

    reference_type: Mapped[Optional[str]] = mapped_column(
        String(30), nullable=True
    )  # order, manual
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index("ix_store_inventory_movements_product_id", "product_id"),
        Index("ix_store_inventory_movements_reference", "reference_type", "reference_id"),
    )

    product = relationship("Product")

    def __repr__(self):
        return f"<InventoryMovement {self.movement_type} qty={self.quantity}>"
