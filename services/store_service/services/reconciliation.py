"""Apply verified payment webhook events to orders.

Delivery is at-least-once and unordered: every event id is recorded, replays
are acknowledged without effect, and ``mark_paid`` is a no-op for anything but a
pending order.
"""

import uuid
from typing import Optional

from libs.common.currency import to_minor_units
from libs.common.datetime_utils import from_unix_timestamp
from libs.common.logging import get_logger
from services.store_service.models import (
    AuditEntityType,
    Order,
    OrderStatus,
    PaymentEvent,
    PaymentEventOutcome,
)
from services.store_service.services.audit import SYSTEM_ACTOR, log_audit
from services.store_service.stripe_client import WebhookEvent
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
PAYMENT_CANCELED = "payment_intent.canceled"
CHARGE_REFUNDED = "charge.refunded"

DUPLICATE = "duplicate"


def _parse_order_id(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def _already_processed(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(
        select(PaymentEvent.id).where(PaymentEvent.event_id == event_id)
    )
    return result.scalar_one_or_none() is not None


async def _apply_payment_succeeded(
    db: AsyncSession, event: WebhookEvent, record: PaymentEvent
) -> None:
    intent = event.data_object
    intent_id = intent.get("id")
    metadata = intent.get("metadata") or {}
    order_id = _parse_order_id(metadata.get("orderId"))
    record.payment_id = intent_id
    record.order_id = order_id

    if order_id is None:
        logger.warning("Payment %s succeeded without a usable orderId", intent_id)
        record.notes = "missing orderId metadata"
        return

    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        logger.warning("Payment %s succeeded for unknown order %s", intent_id, order_id)
        record.notes = "order not found"
        return

    if order.payment_id and order.payment_id != intent_id:
        logger.warning(
            "Payment %s does not match order %s payment %s",
            intent_id,
            order.order_number,
            order.payment_id,
        )
        record.notes = "payment id mismatch"
        return

    received = int(intent.get("amount_received") or intent.get("amount") or 0)
    expected = to_minor_units(order.total_amount, order.currency)
    if received != expected:
        logger.error(
            "Amount mismatch on order %s: got %d, expected %d",
            order.order_number,
            received,
            expected,
        )
        record.notes = f"amount mismatch: got {received}, expected {expected}"
        return

    if order.payment_id is None:
        # Intent was created but its id was never stored on the order
        holder = await db.execute(
            select(Order.order_number).where(
                Order.payment_id == intent_id, Order.id != order.id
            )
        )
        other_order = holder.scalar_one_or_none()
        if other_order is not None:
            logger.warning(
                "Payment %s for order %s already belongs to order %s",
                intent_id,
                order.order_number,
                other_order,
            )
            record.notes = f"payment id already used by order {other_order}"
            return
        order.payment_id = intent_id

    old_status = order.status
    if not order.mark_paid():
        if order.status == OrderStatus.CANCELLED:
            logger.warning(
                "Payment %s succeeded for cancelled order %s; refund required",
                intent_id,
                order.order_number,
            )
            record.notes = "order cancelled before payment; refund required"
        else:
            record.notes = f"order already {order.status.value}"
        return

    record.outcome = PaymentEventOutcome.APPLIED
    await log_audit(
        db,
        entity_type=AuditEntityType.ORDER,
        entity_id=order.id,
        action="marked_paid",
        performed_by=SYSTEM_ACTOR,
        old_value={"status": old_status.value},
        new_value={"status": order.status.value, "payment_id": intent_id},
        notes=f"webhook {event.id}",
    )
    logger.info("Order %s marked paid by webhook %s", order.order_number, event.id)


async def handle_webhook_event(db: AsyncSession, event: WebhookEvent) -> str:
    """Apply one verified event and commit. Returns the recorded outcome.

    Unknown event types are recorded and ignored.
    """
    if await _already_processed(db, event.id):
        logger.info("Duplicate webhook %s (%s) ignored", event.id, event.type)
        return DUPLICATE

    record = PaymentEvent(
        event_id=event.id,
        event_type=event.type,
        outcome=PaymentEventOutcome.IGNORED,
        event_created_at=from_unix_timestamp(event.created),
    )

    if event.type == PAYMENT_SUCCEEDED:
        await _apply_payment_succeeded(db, event, record)
    elif event.type in (PAYMENT_FAILED, PAYMENT_CANCELED):
        intent = event.data_object
        record.payment_id = intent.get("id")
        record.order_id = _parse_order_id((intent.get("metadata") or {}).get("orderId"))
        record.outcome = PaymentEventOutcome.OBSERVED
        error = (intent.get("last_payment_error") or {}).get("message")
        record.notes = error
        logger.warning(
            "Payment %s for order %s: %s",
            record.payment_id,
            record.order_id,
            event.type,
            extra={"extra_fields": {"error": error}},
        )
    elif event.type == CHARGE_REFUNDED:
        charge = event.data_object
        record.payment_id = charge.get("payment_intent")
        record.outcome = PaymentEventOutcome.OBSERVED
        logger.info(
            "Charge refunded for payment %s (amount_refunded=%s)",
            record.payment_id,
            charge.get("amount_refunded"),
        )
    else:
        logger.debug("Unhandled webhook event type %s", event.type)

    db.add(record)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if not await _already_processed(db, event.id):
            logger.error("Webhook %s (%s) failed to commit", event.id, event.type)
            raise
        # Same event delivered concurrently; the other delivery won
        logger.info("Duplicate webhook %s lost the race, ignored", event.id)
        return DUPLICATE

    return record.outcome.value
