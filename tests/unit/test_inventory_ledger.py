"""Unit tests for the inventory ledger (reserve/release)."""

import uuid

import pytest
from services.store_service.errors import InsufficientStock, InvalidInput, NotFound
from services.store_service.models import (
    InventoryMovement,
    InventoryMovementType,
    Product,
)
from services.store_service.services import inventory_ledger
from sqlalchemy import select
from tests.factories import ProductFactory


async def _product(db, **overrides) -> Product:
    product = ProductFactory.create(**overrides)
    db.add(product)
    await db.commit()
    # Detached so a rollback in the code under test does not expire it
    db.expunge(product)
    return product


async def _stock_and_sales(db, product_id):
    row = (
        await db.execute(
            select(Product.stock, Product.sales).where(Product.id == product_id)
        )
    ).one()
    return row.stock, row.sales


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_decrements_stock_and_increments_sales(db_session):
    product = await _product(db_session, stock=5, sales=1)

    reserved = await inventory_ledger.reserve(db_session, product.id, 3)
    await db_session.commit()

    assert reserved.stock_after == 2
    assert reserved.name == product.name
    assert await _stock_and_sales(db_session, product.id) == (2, 4)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_exact_remaining_stock(db_session):
    product = await _product(db_session, stock=3)

    reserved = await inventory_ledger.reserve(db_session, product.id, 3)
    await db_session.commit()

    assert reserved.stock_after == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_insufficient_stock_reports_available(db_session):
    product = await _product(db_session, stock=2, name="Walnut Sideboard")

    with pytest.raises(InsufficientStock) as exc_info:
        await inventory_ledger.reserve(db_session, product.id, 3)

    assert exc_info.value.available == 2
    assert "Walnut Sideboard" in exc_info.value.message
    await db_session.rollback()
    assert await _stock_and_sales(db_session, product.id) == (2, 0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_unknown_product(db_session):
    with pytest.raises(NotFound):
        await inventory_ledger.reserve(db_session, uuid.uuid4(), 1)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_rejects_non_positive_quantity(db_session):
    product = await _product(db_session, stock=2)

    with pytest.raises(InvalidInput):
        await inventory_ledger.reserve(db_session, product.id, 0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_release_is_exact_inverse_of_reserve(db_session):
    product = await _product(db_session, stock=7, sales=4)
    order_id = uuid.uuid4()

    await inventory_ledger.reserve(db_session, product.id, 5, order_id=order_id)
    await db_session.commit()
    released = await inventory_ledger.release(
        db_session, product.id, 5, order_id=order_id
    )
    await db_session.commit()

    assert released is True
    assert await _stock_and_sales(db_session, product.id) == (7, 4)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_release_missing_product_returns_false(db_session):
    assert await inventory_ledger.release(db_session, uuid.uuid4(), 1) is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_movements_recorded_for_reserve_and_release(db_session):
    product = await _product(db_session, stock=4)
    order_id = uuid.uuid4()

    await inventory_ledger.reserve(db_session, product.id, 2, order_id=order_id)
    await inventory_ledger.release(db_session, product.id, 2, order_id=order_id)
    await db_session.commit()

    movements = (
        await db_session.execute(
            select(InventoryMovement)
            .where(InventoryMovement.product_id == product.id)
            .order_by(InventoryMovement.created_at)
        )
    ).scalars().all()
    assert [(m.movement_type, m.quantity) for m in movements] == [
        (InventoryMovementType.SALE, -2),
        (InventoryMovementType.RELEASE, 2),
    ]
    assert all(m.reference_id == order_id for m in movements)
