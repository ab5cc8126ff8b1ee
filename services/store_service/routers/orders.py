"""Store orders router: placement, order history, cancellation."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.models import OrderStatus
from services.store_service.schemas import (
    OrderCancelRequest,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
)
from services.store_service.services import order_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


# ============================================================================
# PLACEMENT
# ============================================================================


@router.post(
    "/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED
)
async def place_order(
    payload: OrderCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Reserve stock and create a pending order."""
    return await order_ops.place_order(
        db,
        user=current_user,
        items=payload.items,
        shipping_address=payload.shipping_address,
        customer_notes=payload.customer_notes,
    )


# ============================================================================
# ORDER HISTORY
# ============================================================================


@router.get("/orders/me", response_model=OrderListResponse)
async def list_my_orders(
    status_filter: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    orders, total = await order_ops.list_orders(
        db,
        user_id=current_user.user_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_my_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    order = await order_ops.get_order(db, order_id)
    order_ops.ensure_order_access(order, current_user)
    return order


# ============================================================================
# CANCELLATION
# ============================================================================


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_my_order(
    order_id: uuid.UUID,
    payload: Optional[OrderCancelRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Cancel a pending or processing order and return its stock.

    An existing payment must be cancelled or refunded separately.
    """
    return await order_ops.cancel_order(
        db,
        order_id=order_id,
        actor=current_user,
        reason=payload.reason if payload else None,
    )
