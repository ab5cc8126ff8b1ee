"""Store catalog models: the product subset the order core depends on."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

# ============================================================================
# PRODUCT MODEL
# ============================================================================


class Product(Base):
    """Products. Catalog management lives elsewhere; stock and sales are owned
    by the inventory ledger."""

    __tablename__ = "store_products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Inventory (mutated only through services.inventory_ledger)
    stock: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    sales: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("stock >= 0", name="product_stock_non_negative"),
        CheckConstraint("sales >= 0", name="product_sales_non_negative"),
        CheckConstraint("price >= 0", name="product_price_non_negative"),
    )

    def __repr__(self):
        return f"<Product {self.name} stock={self.stock}>"
