"""Inventory ledger: conditional stock decrement/increment with an audit trail.

Both operations run inside the caller's transaction and never commit. Stock is
only ever changed here.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.store_service.errors import InsufficientStock, InvalidInput, NotFound
from services.store_service.models import (
    InventoryMovement,
    InventoryMovementType,
    Product,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReservedProduct:
    """Product snapshot returned by a successful reservation."""

    id: uuid.UUID
    name: str
    price: Decimal
    image_url: Optional[str]
    stock_after: int


async def reserve(
    db: AsyncSession,
    product_id: uuid.UUID,
    quantity: int,
    *,
    order_id: Optional[uuid.UUID] = None,
    performed_by: Optional[str] = None,
) -> ReservedProduct:
    """Decrement stock and increment sales by ``quantity``.

    A single ``UPDATE ... WHERE stock >= :quantity`` does the check and the
    decrement, so concurrent reservations can never drive stock negative.
    """
    if quantity < 1:
        raise InvalidInput("Quantity must be at least 1")

    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(
            stock=Product.stock - quantity,
            sales=Product.sales + quantity,
            updated_at=utc_now(),
        )
        .returning(
            Product.id, Product.name, Product.price, Product.image_url, Product.stock
        )
        .execution_options(synchronize_session=False)
    )
    row = result.first()

    if row is None:
        current = await db.execute(
            select(Product.name, Product.stock).where(Product.id == product_id)
        )
        found = current.first()
        if found is None:
            raise NotFound(f"Product {product_id} not found")
        logger.info(
            "Reservation rejected for product %s: requested=%d available=%d",
            product_id,
            quantity,
            found.stock,
        )
        raise InsufficientStock(product_id, found.name, found.stock)

    db.add(
        InventoryMovement(
            product_id=product_id,
            movement_type=InventoryMovementType.SALE,
            quantity=-quantity,
            reference_type="order" if order_id else None,
            reference_id=order_id,
            performed_by=performed_by,
        )
    )

    return ReservedProduct(
        id=row.id,
        name=row.name,
        price=Decimal(row.price),
        image_url=row.image_url,
        stock_after=row.stock,
    )


async def release(
    db: AsyncSession,
    product_id: uuid.UUID,
    quantity: int,
    *,
    order_id: Optional[uuid.UUID] = None,
    performed_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> bool:
    """Return ``quantity`` units to stock and take them off sales.

    Exact inverse of ``reserve``. Returns False when the product no longer
    exists. Firing at most once per order is the order state machine's job.
    """
    if quantity < 1:
        raise InvalidInput("Quantity must be at least 1")

    result = await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(
            stock=Product.stock + quantity,
            sales=Product.sales - quantity,
            updated_at=utc_now(),
        )
        .returning(Product.id)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        logger.warning(
            "Stock release skipped, product %s no longer exists (order=%s qty=%d)",
            product_id,
            order_id,
            quantity,
        )
        return False

    db.add(
        InventoryMovement(
            product_id=product_id,
            movement_type=InventoryMovementType.RELEASE,
            quantity=quantity,
            reference_type="order" if order_id else None,
            reference_id=order_id,
            performed_by=performed_by,
            notes=notes,
        )
    )
    return True
