"""Order operations: placement, lookup, admin status changes and cancellation.

Every mutating operation is one unit of work: it either commits all of its
changes (order row, stock, audit rows) or rolls all of them back.
"""

import uuid
from decimal import Decimal
from typing import Optional, Sequence

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.store_service.errors import (
    AccessDenied,
    InvalidInput,
    InvalidTransition,
    NotFound,
    StoreError,
    TransactionAbort,
)
from services.store_service.models import (
    AuditEntityType,
    Order,
    OrderItem,
    OrderStatus,
)
from services.store_service.schemas import OrderItemCreate, ShippingAddress
from services.store_service.services import inventory_ledger
from services.store_service.services.audit import log_audit
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_retryable_conflict(exc: DBAPIError) -> bool:
    """True for storage conflicts where replaying the whole placement is safe."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    message = str(orig if orig is not None else exc).lower()
    if "database is locked" in message:
        return True
    # Random order number collided with an existing one
    return isinstance(exc, IntegrityError) and "order_number" in message


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


async def get_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Order:
    """Load an order with its items; optionally lock the row."""
    query = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")
    return order


def ensure_order_access(order: Order, user: AuthUser) -> None:
    if user.is_admin or order.user_id == user.user_id:
        return
    raise AccessDenied("Not authorized to access this order")


async def list_orders(
    db: AsyncSession,
    *,
    user_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    """Newest first. Returns ``(orders, total)``."""
    query = select(Order)
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    if status is not None:
        query = query.where(Order.status == status)

    total = (
        await db.execute(select(func.count()).select_from(query.subquery()))
    ).scalar_one()

    result = await db.execute(
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------


def _validate_placement(
    items: Sequence[OrderItemCreate], shipping_address: Optional[ShippingAddress]
) -> None:
    if not items:
        raise InvalidInput("Order must contain at least one item")
    if shipping_address is None:
        raise InvalidInput("Shipping address is required")
    missing = [
        name
        for name in ("street", "city", "postal_code", "country")
        if not (getattr(shipping_address, name, None) or "").strip()
    ]
    if missing:
        raise InvalidInput(f"Shipping address is incomplete: {', '.join(missing)}")


async def _place_order_once(
    db: AsyncSession,
    *,
    user: AuthUser,
    items: Sequence[OrderItemCreate],
    shipping_address: ShippingAddress,
    customer_notes: Optional[str],
    currency: str,
) -> Order:
    order_id = uuid.uuid4()
    order_items = []
    total = Decimal("0")

    # Array order; the first failure aborts the whole attempt
    for position, line in enumerate(items):
        reserved = await inventory_ledger.reserve(
            db,
            line.product_id,
            line.quantity,
            order_id=order_id,
            performed_by=user.user_id,
        )
        if line.price is not None and Decimal(line.price) != reserved.price:
            raise InvalidInput(
                f"Price for {reserved.name} has changed. Current price: {reserved.price}"
            )

        line_total = reserved.price * line.quantity
        total += line_total
        order_items.append(
            OrderItem(
                product_id=reserved.id,
                position=position,
                product_name=reserved.name,
                image_url=reserved.image_url,
                quantity=line.quantity,
                unit_price=reserved.price,
                line_total=line_total,
            )
        )

    order = Order(
        id=order_id,
        order_number=Order.generate_order_number(),
        user_id=user.user_id,
        customer_email=user.email,
        customer_name=user.name,
        total_amount=total,
        amount_refunded=Decimal("0"),
        currency=currency,
        shipping_street=shipping_address.street.strip(),
        shipping_city=shipping_address.city.strip(),
        shipping_postal_code=shipping_address.postal_code.strip(),
        shipping_country=shipping_address.country.strip(),
        status=OrderStatus.PENDING,
        customer_notes=customer_notes,
        items=order_items,
    )
    db.add(order)
    await db.flush()
    await db.commit()
    return order


async def place_order(
    db: AsyncSession,
    *,
    user: AuthUser,
    items: Sequence[OrderItemCreate],
    shipping_address: Optional[ShippingAddress],
    customer_notes: Optional[str] = None,
    max_retries: Optional[int] = None,
) -> Order:
    """Reserve stock for every item and create a pending order, atomically.

    Either returns the committed order with its items, or raises with no stock
    changed and no order persisted. Storage conflicts are retried up to
    ``max_retries`` extra times before ``TransactionAbort``.
    """
    _validate_placement(items, shipping_address)

    settings = get_settings()
    if max_retries is None:
        max_retries = settings.ORDER_PLACEMENT_MAX_RETRIES
    attempts = max(1, max_retries + 1)

    for attempt in range(1, attempts + 1):
        try:
            order = await _place_order_once(
                db,
                user=user,
                items=items,
                shipping_address=shipping_address,
                customer_notes=customer_notes,
                currency=settings.PAYMENT_CURRENCY,
            )
        except StoreError:
            await db.rollback()
            raise
        except DBAPIError as exc:
            await db.rollback()
            if not is_retryable_conflict(exc):
                raise
            logger.warning(
                "Order placement conflict for user %s (attempt %d/%d)",
                user.user_id,
                attempt,
                attempts,
            )
            if attempt == attempts:
                raise TransactionAbort(
                    "Order could not be placed due to concurrent updates. Please retry."
                ) from exc
            continue

        logger.info(
            "Placed order %s for user %s",
            order.order_number,
            user.user_id,
            extra={"extra_fields": {
                "order_id": str(order.id),
                "total_amount": str(order.total_amount),
                "item_count": len(order.items),
            }},
        )
        return order

    # Unreachable: the loop either returns or raises
    raise TransactionAbort("Order could not be placed")


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def cancel_locked_order(
    db: AsyncSession,
    order: Order,
    *,
    performed_by: str,
    notes: Optional[str] = None,
) -> None:
    """Release every item once and mark the order cancelled.

    ``order`` must have been loaded with ``for_update=True`` in this transaction.
    Does not commit.
    """
    order.ensure_cancellable()
    old_status = order.status

    for item in order.items:
        await inventory_ledger.release(
            db,
            item.product_id,
            item.quantity,
            order_id=order.id,
            performed_by=performed_by,
            notes=notes,
        )

    order.mark_cancelled()
    await log_audit(
        db,
        entity_type=AuditEntityType.ORDER,
        entity_id=order.id,
        action="cancelled",
        performed_by=performed_by,
        old_value={"status": old_status.value},
        new_value={"status": order.status.value},
        notes=notes,
    )


async def cancel_order(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    actor: AuthUser,
    reason: Optional[str] = None,
) -> Order:
    """Cancel a pending or processing order and return its stock.

    The payment intent, if any, is left alone.
    """
    try:
        order = await get_order(db, order_id, for_update=True)
        ensure_order_access(order, actor)
        await cancel_locked_order(db, order, performed_by=actor.user_id, notes=reason)
        await db.commit()
    except StoreError:
        await db.rollback()
        raise

    logger.info("Cancelled order %s by %s", order.order_number, actor.user_id)
    return order


# ---------------------------------------------------------------------------
# Admin status changes
# ---------------------------------------------------------------------------


async def update_order_status(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    new_status: OrderStatus,
    actor: AuthUser,
    tracking_number: Optional[str] = None,
    carrier: Optional[str] = None,
    admin_notes: Optional[str] = None,
) -> Order:
    """Ship, deliver or cancel an order (admin)."""
    try:
        order = await get_order(db, order_id, for_update=True)

        if new_status == OrderStatus.CANCELLED:
            await cancel_locked_order(
                db, order, performed_by=actor.user_id, notes=admin_notes
            )
        elif new_status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            old_value = {
                "status": order.status.value,
                "tracking_number": order.tracking_number,
                "carrier": order.carrier,
            }
            order.advance_fulfillment(
                new_status, tracking_number=tracking_number, carrier=carrier
            )
            await log_audit(
                db,
                entity_type=AuditEntityType.ORDER,
                entity_id=order.id,
                action="status_updated",
                performed_by=actor.user_id,
                old_value=old_value,
                new_value={
                    "status": order.status.value,
                    "tracking_number": order.tracking_number,
                    "carrier": order.carrier,
                },
                notes=admin_notes,
            )
        else:
            raise InvalidTransition(
                f"Cannot set order status to '{new_status.value}' manually"
            )

        if admin_notes:
            order.admin_notes = admin_notes
        await db.commit()
    except StoreError:
        await db.rollback()
        raise

    logger.info(
        "Order %s status -> %s by %s",
        order.order_number,
        order.status.value,
        actor.user_id,
    )
    return order
