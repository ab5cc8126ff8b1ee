"""Stripe webhook endpoint."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.errors import InvalidInput, InvalidSignature
from services.store_service.schemas import WebhookAck
from services.store_service.services.reconciliation import handle_webhook_event
from services.store_service.stripe_client import PaymentGateway, get_payment_gateway
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Stripe webhook endpoint (no auth; verified by the Stripe-Signature header).

    The signature is checked against the raw body before anything is parsed.
    """
    raw = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature header",
        )

    try:
        event = gateway.verify_webhook(raw, signature)
    except (InvalidSignature, InvalidInput) as exc:
        logger.warning("Webhook rejected: %s", exc.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook signature verification failed",
        )

    outcome = await handle_webhook_event(db, event)
    logger.info(
        "Webhook %s (%s) processed",
        event.id,
        event.type,
        extra={"extra_fields": {"outcome": outcome}},
    )
    return WebhookAck(received=True)
