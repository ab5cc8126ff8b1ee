"""Unit tests for applying payment webhook events."""

import time
import uuid
from decimal import Decimal

import pytest
from services.store_service.models import (
    Order,
    OrderStatus,
    PaymentEvent,
    PaymentEventOutcome,
    Product,
)
from services.store_service.services import order_ops, reconciliation
from services.store_service.stripe_client import WebhookEvent
from sqlalchemy import func, select
from tests.conftest import CUSTOMER, succeeded_intent
from tests.factories import OrderFactory, ProductFactory


async def _order(db, **overrides):
    # Stock and sales as they stand after reserving the order's two units
    product = ProductFactory.create(price=Decimal("250.00"), stock=8, sales=2)
    order = OrderFactory.create(product, quantity=2, **overrides)
    db.add_all([product, order])
    await db.commit()
    return order


def _event(event_type, data_object, event_id=None, created=None) -> WebhookEvent:
    return WebhookEvent(
        id=event_id or f"evt_{uuid.uuid4().hex[:16]}",
        type=event_type,
        data_object=data_object,
        created=int(time.time()) if created is None else created,
    )


async def _event_record(db, event_id) -> PaymentEvent:
    return (
        await db.execute(select(PaymentEvent).where(PaymentEvent.event_id == event_id))
    ).scalar_one()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_succeeded_event_marks_order_paid(db_session):
    order = await _order(db_session, payment_id="pi_match")
    event = _event(
        reconciliation.PAYMENT_SUCCEEDED, succeeded_intent(order, "pi_match")
    )

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.APPLIED.value
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.status == OrderStatus.PROCESSING
    assert reloaded.paid_at is not None
    record = await _event_record(db_session, event.id)
    assert record.order_id == order.id
    assert record.payment_id == "pi_match"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_replayed_event_is_a_noop(db_session):
    order = await _order(db_session, payment_id="pi_replay")
    event = _event(
        reconciliation.PAYMENT_SUCCEEDED, succeeded_intent(order, "pi_replay")
    )

    await reconciliation.handle_webhook_event(db_session, event)
    first_paid_at = (await order_ops.get_order(db_session, order.id)).paid_at

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == reconciliation.DUPLICATE
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.status == OrderStatus.PROCESSING
    assert reloaded.paid_at == first_paid_at
    count = (
        await db_session.execute(select(func.count()).select_from(PaymentEvent))
    ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_second_success_event_for_paid_order_is_ignored(db_session):
    order = await _order(db_session, payment_id="pi_twice")
    data = succeeded_intent(order, "pi_twice")

    await reconciliation.handle_webhook_event(
        db_session, _event(reconciliation.PAYMENT_SUCCEEDED, data)
    )
    first_paid_at = (await order_ops.get_order(db_session, order.id)).paid_at
    outcome = await reconciliation.handle_webhook_event(
        db_session, _event(reconciliation.PAYMENT_SUCCEEDED, data)
    )

    assert outcome == PaymentEventOutcome.IGNORED.value
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.paid_at == first_paid_at


@pytest.mark.asyncio
@pytest.mark.unit
async def test_success_adopts_payment_id_when_missing(db_session):
    order = await _order(db_session)
    event = _event(
        reconciliation.PAYMENT_SUCCEEDED, succeeded_intent(order, "pi_adopted")
    )

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.APPLIED.value
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.payment_id == "pi_adopted"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_amount_mismatch_leaves_order_pending(db_session):
    order = await _order(db_session, payment_id="pi_short")
    event = _event(
        reconciliation.PAYMENT_SUCCEEDED,
        succeeded_intent(order, "pi_short", amount=100),
    )

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.IGNORED.value
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.status == OrderStatus.PENDING
    assert reloaded.paid_at is None
    record = await _event_record(db_session, event.id)
    assert "amount mismatch" in record.notes


@pytest.mark.asyncio
@pytest.mark.unit
async def test_payment_id_mismatch_is_ignored(db_session):
    order = await _order(db_session, payment_id="pi_original")
    event = _event(
        reconciliation.PAYMENT_SUCCEEDED, succeeded_intent(order, "pi_other")
    )

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.IGNORED.value
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.status == OrderStatus.PENDING
    assert reloaded.payment_id == "pi_original"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_success_for_cancelled_order_flags_refund(db_session):
    order = await _order(db_session, payment_id="pi_late")
    await order_ops.cancel_order(db_session, order_id=order.id, actor=CUSTOMER)
    event = _event(reconciliation.PAYMENT_SUCCEEDED, succeeded_intent(order, "pi_late"))

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.IGNORED.value
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.status == OrderStatus.CANCELLED
    assert reloaded.paid_at is None
    stock = (
        await db_session.execute(
            select(Product.stock, Product.sales).where(
                Product.id == reloaded.items[0].product_id
            )
        )
    ).one()
    assert (stock.stock, stock.sales) == (10, 0)
    record = await _event_record(db_session, event.id)
    assert "refund required" in record.notes


@pytest.mark.asyncio
@pytest.mark.unit
async def test_paid_at_uses_local_clock_not_event_time(db_session):
    order = await _order(db_session, payment_id="pi_skewed")
    event = _event(
        reconciliation.PAYMENT_SUCCEEDED,
        succeeded_intent(order, "pi_skewed"),
        created=int(time.time()) - 86400,
    )

    await reconciliation.handle_webhook_event(db_session, event)

    row = (
        await db_session.execute(
            select(Order.created_at, Order.paid_at).where(Order.id == order.id)
        )
    ).one()
    assert row.paid_at >= row.created_at


@pytest.mark.asyncio
@pytest.mark.unit
async def test_success_with_intent_owned_by_another_order(db_session):
    await _order(db_session, payment_id="pi_taken")
    order = await _order(db_session)
    order_id = order.id
    event = _event(reconciliation.PAYMENT_SUCCEEDED, succeeded_intent(order, "pi_taken"))

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.IGNORED.value
    reloaded = await order_ops.get_order(db_session, order_id)
    assert reloaded.status == OrderStatus.PENDING
    assert reloaded.payment_id is None
    record = await _event_record(db_session, event.id)
    assert record.notes.startswith("payment id already used by order")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_duplicate_delivery_is_acknowledged(db_session, monkeypatch):
    """The other delivery committed between the lookup and our insert."""
    event = _event("customer.created", {"id": "cus_race"}, event_id="evt_race")
    db_session.add(
        PaymentEvent(
            event_id="evt_race",
            event_type="customer.created",
            outcome=PaymentEventOutcome.IGNORED,
        )
    )
    await db_session.commit()

    lookup = reconciliation._already_processed
    calls = []

    async def miss_first_lookup(db, event_id):
        calls.append(event_id)
        if len(calls) == 1:
            return False
        return await lookup(db, event_id)

    monkeypatch.setattr(reconciliation, "_already_processed", miss_first_lookup)

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == reconciliation.DUPLICATE
    assert calls == ["evt_race", "evt_race"]
    count = (
        await db_session.execute(select(func.count()).select_from(PaymentEvent))
    ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_success_for_unknown_order(db_session):
    event = _event(
        reconciliation.PAYMENT_SUCCEEDED,
        {
            "id": "pi_orphan",
            "amount": 1000,
            "amount_received": 1000,
            "metadata": {"orderId": str(uuid.uuid4())},
        },
    )

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.IGNORED.value
    record = await _event_record(db_session, event.id)
    assert record.notes == "order not found"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_payment_is_observed_only(db_session):
    order = await _order(db_session, payment_id="pi_declined")
    event = _event(
        reconciliation.PAYMENT_FAILED,
        {
            "id": "pi_declined",
            "status": "requires_payment_method",
            "metadata": {"orderId": str(order.id)},
            "last_payment_error": {"message": "Your card was declined."},
        },
    )

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.OBSERVED.value
    reloaded = await order_ops.get_order(db_session, order.id)
    assert reloaded.status == OrderStatus.PENDING
    record = await _event_record(db_session, event.id)
    assert record.notes == "Your card was declined."


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_event_type_is_recorded_and_ignored(db_session):
    event = _event("customer.created", {"id": "cus_123"})

    outcome = await reconciliation.handle_webhook_event(db_session, event)

    assert outcome == PaymentEventOutcome.IGNORED.value
    record = await _event_record(db_session, event.id)
    assert record.event_type == "customer.created"
    assert record.order_id is None
