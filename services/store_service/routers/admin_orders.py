"""Admin order management: listing, status updates, refunds."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.currency import from_minor_units
from libs.db.session import get_async_db
from services.store_service.models import OrderStatus
from services.store_service.schemas import (
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    RefundCreate,
    RefundResponse,
)
from services.store_service.services import order_ops, payment_ops
from services.store_service.stripe_client import PaymentGateway, get_payment_gateway
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-store"])


@router.get("/orders", response_model=OrderListResponse)
async def list_all_orders(
    status_filter: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List all orders."""
    orders, total = await order_ops.list_orders(
        db, status=status_filter, page=page, page_size=page_size
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order_admin(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Get order detail (admin)."""
    return await order_ops.get_order(db, order_id)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    status_update: OrderStatusUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Ship, deliver or cancel an order."""
    return await order_ops.update_order_status(
        db,
        order_id=order_id,
        new_status=status_update.status,
        actor=current_user,
        tracking_number=status_update.tracking_number,
        carrier=status_update.carrier,
        admin_notes=status_update.admin_notes,
    )


@router.post("/orders/{order_id}/refund", response_model=RefundResponse)
async def refund_order(
    order_id: uuid.UUID,
    payload: RefundCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Refund an order's payment. A full refund cancels an open order."""
    result = await payment_ops.refund_order(
        db,
        gateway,
        order_id=order_id,
        actor=current_user,
        amount=payload.amount,
        reason=payload.reason,
    )
    order = result.order
    return RefundResponse(
        refund_id=result.refund.id,
        status=result.refund.status,
        amount=from_minor_units(result.refund.amount, order.currency),
        currency=order.currency,
        order_id=order.id,
        order_status=order.status,
        amount_refunded=order.amount_refunded,
    )
