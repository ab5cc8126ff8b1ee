"""Payment operations: intent creation, status checks, intent cancellation, refunds.

Gateway calls happen while the order row is locked so concurrent requests for
the same order serialize on it.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.currency import from_minor_units, to_minor_units
from libs.common.logging import get_logger
from services.store_service.errors import (
    AlreadyExists,
    GatewayError,
    InvalidInput,
    InvalidTransition,
    NoPayment,
    NotFound,
    StoreError,
)
from services.store_service.models import (
    AuditEntityType,
    Order,
    OrderStatus,
    RefundReason,
)
from services.store_service.services.audit import SYSTEM_ACTOR, log_audit
from services.store_service.services.order_ops import (
    cancel_locked_order,
    ensure_order_access,
    get_order,
)
from services.store_service.stripe_client import PaymentGateway, PaymentIntent, Refund
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

INTENT_SUCCEEDED = "succeeded"


def intent_idempotency_key(order_id: uuid.UUID) -> str:
    return f"order-{order_id}-intent"


@dataclass
class PaymentStatus:
    intent: PaymentIntent
    order: Order


@dataclass
class RefundResult:
    refund: Refund
    order: Order


async def _get_order_by_payment_id(
    db: AsyncSession, payment_id: str, *, for_update: bool = False
) -> Order:
    query = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.payment_id == payment_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    order = (await db.execute(query)).scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found for this payment")
    return order


# ---------------------------------------------------------------------------
# Payment intents
# ---------------------------------------------------------------------------


async def create_payment_intent(
    db: AsyncSession,
    gateway: PaymentGateway,
    *,
    order_id: uuid.UUID,
    user: AuthUser,
) -> tuple[Order, PaymentIntent]:
    """Create the one payment intent an order may ever have.

    Raises:
        AlreadyExists: the order already has a payment intent
        InvalidTransition: the order is not pending
        GatewayError: the processor call failed; check ``outcome_unknown``
    """
    try:
        order = await get_order(db, order_id, for_update=True)
        if order.user_id != user.user_id:
            raise NotFound("Order not found")
        if order.payment_id:
            raise AlreadyExists("Payment intent already exists for this order")
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(
                f"Cannot create payment for order in status '{order.status.value}'"
            )

        amount = to_minor_units(order.total_amount, order.currency)
        if amount <= 0:
            raise InvalidInput("Order total must be greater than zero")

        intent = await gateway.create_intent(
            amount=amount,
            currency=order.currency,
            order_id=str(order.id),
            customer_email=order.customer_email,
            customer_name=order.customer_name,
            idempotency_key=intent_idempotency_key(order.id),
        )

        order.payment_id = intent.id
        await log_audit(
            db,
            entity_type=AuditEntityType.PAYMENT,
            entity_id=order.id,
            action="intent_created",
            performed_by=user.user_id,
            new_value={"payment_id": intent.id, "amount": amount, "currency": order.currency},
        )
        await db.commit()
    except StoreError as exc:
        await db.rollback()
        if isinstance(exc, GatewayError):
            logger.error(
                "Payment intent creation failed for order %s (outcome_unknown=%s): %s",
                order_id,
                exc.outcome_unknown,
                exc.message,
            )
        raise

    logger.info(
        "Created payment intent %s for order %s",
        intent.id,
        order.order_number,
        extra={"extra_fields": {"amount": amount, "currency": order.currency}},
    )
    return order, intent


async def get_payment_status(
    db: AsyncSession,
    gateway: PaymentGateway,
    *,
    intent_id: str,
    user: AuthUser,
) -> PaymentStatus:
    """Fetch the live intent status for the order owner or an admin.

    A succeeded intent whose order is still pending is reconciled here too, for
    webhooks that are delayed or lost.
    """
    order = await _get_order_by_payment_id(db, intent_id)
    ensure_order_access(order, user)

    intent = await gateway.get_intent(intent_id)

    if intent.status == INTENT_SUCCEEDED and order.status == OrderStatus.PENDING:
        expected = to_minor_units(order.total_amount, order.currency)
        try:
            order = await _get_order_by_payment_id(db, intent_id, for_update=True)
            if intent.amount != expected:
                logger.error(
                    "Intent %s amount mismatch: got %d, expected %d",
                    intent_id,
                    intent.amount,
                    expected,
                )
            elif order.mark_paid():
                await log_audit(
                    db,
                    entity_type=AuditEntityType.ORDER,
                    entity_id=order.id,
                    action="marked_paid",
                    performed_by=SYSTEM_ACTOR,
                    new_value={"status": order.status.value, "payment_id": intent_id},
                    notes="Reconciled from payment status check",
                )
                logger.info(
                    "Order %s marked paid from status check", order.order_number
                )
            await db.commit()
        except StoreError:
            await db.rollback()
            raise

    return PaymentStatus(intent=intent, order=order)


async def cancel_payment_intent(
    db: AsyncSession,
    gateway: PaymentGateway,
    *,
    intent_id: str,
    user: AuthUser,
) -> tuple[Order, PaymentIntent]:
    """Cancel an uncaptured intent. The order itself is left unchanged."""
    order = await _get_order_by_payment_id(db, intent_id)
    ensure_order_access(order, user)

    intent = await gateway.cancel_intent(intent_id)

    await log_audit(
        db,
        entity_type=AuditEntityType.PAYMENT,
        entity_id=order.id,
        action="intent_cancelled",
        performed_by=user.user_id,
        new_value={"payment_id": intent_id, "status": intent.status},
    )
    await db.commit()
    logger.info("Cancelled payment intent %s for order %s", intent_id, order.order_number)
    return order, intent


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


async def refund_order(
    db: AsyncSession,
    gateway: PaymentGateway,
    *,
    order_id: uuid.UUID,
    actor: AuthUser,
    amount: Optional[Decimal] = None,
    reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER,
) -> RefundResult:
    """Refund an order's payment (admin).

    ``amount`` defaults to the remaining refundable balance. When the refunds
    add up to the full total, a pending or processing order is cancelled and
    its stock released; other statuses are left as they are.
    """
    try:
        order = await get_order(db, order_id, for_update=True)
        if not order.payment_id:
            raise NoPayment("No payment found for this order")

        remaining = order.refundable_amount
        if remaining <= 0:
            raise InvalidInput("Order has already been fully refunded")
        refund_amount = remaining if amount is None else Decimal(amount)
        if refund_amount <= 0:
            raise InvalidInput("Refund amount must be greater than zero")
        if refund_amount > remaining:
            raise InvalidInput(
                f"Refund amount exceeds refundable balance. Refundable: {remaining}"
            )

        refund = await gateway.create_refund(
            order.payment_id,
            amount=None if amount is None else to_minor_units(refund_amount, order.currency),
            reason=reason.value,
        )

        refunded = refund_amount
        if refund.amount:
            gateway_amount = from_minor_units(refund.amount, order.currency)
            if gateway_amount != refund_amount:
                logger.warning(
                    "Refund %s amount %d differs from requested %s on order %s",
                    refund.id,
                    refund.amount,
                    refund_amount,
                    order.order_number,
                )
            if amount is None:
                # Stripe refunded whatever was left on the charge
                refunded = min(gateway_amount, remaining)
        old_value = {
            "status": order.status.value,
            "amount_refunded": str(order.amount_refunded),
        }
        order.amount_refunded = Decimal(order.amount_refunded or 0) + refunded
        full_refund = order.refundable_amount <= 0

        if full_refund and order.is_cancellable:
            await cancel_locked_order(
                db,
                order,
                performed_by=actor.user_id,
                notes=f"Refunded ({reason.value})",
            )

        await log_audit(
            db,
            entity_type=AuditEntityType.PAYMENT,
            entity_id=order.id,
            action="refunded",
            performed_by=actor.user_id,
            old_value=old_value,
            new_value={
                "status": order.status.value,
                "amount_refunded": str(order.amount_refunded),
                "refund_id": refund.id,
            },
            notes=reason.value,
        )
        await db.commit()
    except StoreError as exc:
        await db.rollback()
        if isinstance(exc, GatewayError):
            logger.error(
                "Refund failed for order %s (outcome_unknown=%s): %s",
                order_id,
                exc.outcome_unknown,
                exc.message,
            )
        raise

    logger.info(
        "Refunded %s %s on order %s (full=%s)",
        refunded,
        order.currency,
        order.order_number,
        full_refund,
    )
    return RefundResult(refund=refund, order=order)
