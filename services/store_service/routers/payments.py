"""Payment intent routes for store orders."""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.currency import from_minor_units
from libs.db.session import get_async_db
from services.store_service.schemas import (
    PaymentConfigResponse,
    PaymentIntentCreate,
    PaymentIntentResponse,
    PaymentStatusResponse,
)
from services.store_service.services import payment_ops
from services.store_service.stripe_client import PaymentGateway, get_payment_gateway
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/intents",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_intent(
    payload: PaymentIntentCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create the payment intent for a pending order."""
    order, intent = await payment_ops.create_payment_intent(
        db, gateway, order_id=payload.order_id, user=current_user
    )
    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        amount=intent.amount,
        currency=intent.currency or order.currency,
        order_id=order.id,
    )


@router.get("/intents/{intent_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    intent_id: str,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    result = await payment_ops.get_payment_status(
        db, gateway, intent_id=intent_id, user=current_user
    )
    currency = result.intent.currency or result.order.currency
    return PaymentStatusResponse(
        payment_intent_id=result.intent.id,
        status=result.intent.status,
        amount=from_minor_units(result.intent.amount, currency),
        currency=currency,
        order_id=result.order.id,
        order_status=result.order.status,
    )


@router.post("/intents/{intent_id}/cancel", response_model=PaymentStatusResponse)
async def cancel_payment_intent(
    intent_id: str,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    order, intent = await payment_ops.cancel_payment_intent(
        db, gateway, intent_id=intent_id, user=current_user
    )
    currency = intent.currency or order.currency
    return PaymentStatusResponse(
        payment_intent_id=intent.id,
        status=intent.status,
        amount=from_minor_units(intent.amount, currency),
        currency=currency,
        order_id=order.id,
        order_status=order.status,
    )


@router.get("/config", response_model=PaymentConfigResponse)
async def get_payment_config():
    """Publishable key and currency for the frontend."""
    settings = get_settings()
    return PaymentConfigResponse(
        publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
        currency=settings.PAYMENT_CURRENCY,
    )
