"""
Stripe API client for payment intents, refunds and webhook verification.

Provides async methods for:
- Creating, retrieving and cancelling payment intents
- Creating refunds
- Verifying and parsing signed webhook events

Amounts are always integers in the smallest currency unit.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Protocol

import httpx
from libs.common.config import get_settings
from services.store_service.errors import GatewayError, InvalidInput, InvalidSignature

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"


@dataclass
class PaymentIntent:
    """Stripe payment intent (subset)."""

    id: str
    status: str  # requires_payment_method, processing, succeeded, canceled, ...
    amount: int  # in minor units
    currency: str
    client_secret: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_stripe(cls, data: dict) -> "PaymentIntent":
        return cls(
            id=data["id"],
            status=data.get("status", ""),
            amount=int(data.get("amount") or 0),
            currency=data.get("currency", ""),
            client_secret=data.get("client_secret"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Refund:
    """Result of creating a refund."""

    id: str
    status: str  # pending, succeeded, failed, canceled
    amount: int  # in minor units
    payment_intent: Optional[str] = None


@dataclass
class WebhookEvent:
    """A verified webhook event."""

    id: str
    type: str
    data_object: dict
    created: Optional[int] = None


class PaymentGateway(Protocol):
    """Capabilities the order core needs from a payment processor."""

    async def create_intent(
        self,
        amount: int,
        currency: str,
        order_id: str,
        customer_email: Optional[str],
        customer_name: Optional[str],
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent: ...

    async def get_intent(self, intent_id: str) -> PaymentIntent: ...

    async def cancel_intent(self, intent_id: str) -> PaymentIntent: ...

    async def create_refund(
        self,
        intent_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Refund: ...

    def verify_webhook(self, payload: bytes, signature_header: str) -> WebhookEvent: ...


def verify_stripe_signature(
    payload: bytes,
    signature_header: str,
    secret: str,
    tolerance: int = 300,
    now: Optional[float] = None,
) -> None:
    """
    Check a ``Stripe-Signature`` header against the raw request body.

    The header looks like ``t=1700000000,v1=<hex>[,v1=<hex>]``. The expected
    signature is HMAC-SHA256 over ``"<t>." + payload``. Raises InvalidSignature
    on any mismatch, malformed header or a timestamp outside ``tolerance``.
    """
    if not secret:
        logger.error("Stripe webhook secret is not configured")
        raise InvalidSignature("Webhook secret is not configured")
    if not signature_header:
        raise InvalidSignature("Missing signature header")

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)

    if not timestamp or not signatures:
        raise InvalidSignature("Malformed signature header")
    try:
        timestamp_value = int(timestamp)
    except ValueError:
        raise InvalidSignature("Malformed signature timestamp")

    signed_payload = timestamp.encode("utf-8") + b"." + payload
    expected = hmac.new(
        secret.encode("utf-8"), signed_payload, hashlib.sha256
    ).hexdigest()

    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise InvalidSignature("Signature mismatch")

    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp_value) > tolerance:
        raise InvalidSignature("Signature timestamp outside tolerance")


def parse_webhook_event(payload: bytes) -> WebhookEvent:
    """Parse an already verified payload."""
    try:
        data = json.loads(payload)
        return WebhookEvent(
            id=data["id"],
            type=data["type"],
            data_object=(data.get("data") or {}).get("object") or {},
            created=data.get("created"),
        )
    except (ValueError, KeyError, TypeError, AttributeError):
        raise InvalidInput("Malformed webhook payload")


class StripeClient:
    """Async client for the Stripe Payment Intents and Refunds APIs."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        webhook_tolerance: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self.api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT
        self.webhook_tolerance = (
            webhook_tolerance
            if webhook_tolerance is not None
            else settings.STRIPE_WEBHOOK_TOLERANCE
        )
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        """Make an async request to the Stripe API."""
        if not self.secret_key:
            raise GatewayError("Stripe is not configured")

        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        # A mutating request that might have reached Stripe has an unknown outcome
        mutating = method.upper() != "GET"

        try:
            async with httpx.AsyncClient(
                base_url=self.api_base,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method=method,
                    url=endpoint,
                    headers=headers,
                    data=data,
                )
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            logger.error(f"Stripe unreachable: {method} {endpoint} - {exc!r}")
            raise GatewayError("Payment processor unreachable") from exc
        except httpx.TimeoutException as exc:
            logger.error(f"Stripe timeout: {method} {endpoint} - {exc!r}")
            raise GatewayError(
                "Payment processor timed out", outcome_unknown=mutating
            ) from exc
        except httpx.TransportError as exc:
            logger.error(f"Stripe transport error: {method} {endpoint} - {exc!r}")
            raise GatewayError(
                "Payment processor connection failed", outcome_unknown=mutating
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.is_success:
            logger.error(f"Stripe API error: {response.status_code} - {body}")
            error = body.get("error") or {}
            raise GatewayError(
                error.get("message", "Unknown Stripe error"),
                outcome_unknown=mutating and response.status_code >= 500,
                status_code=response.status_code,
                response_data=body,
            )

        return body

    # =========================================================================
    # Payment Intent Methods
    # =========================================================================

    async def create_intent(
        self,
        amount: int,
        currency: str,
        order_id: str,
        customer_email: Optional[str],
        customer_name: Optional[str],
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        """
        Create a payment intent for an order.

        Args:
            amount: Amount in minor units
            currency: ISO currency code (lowercase)
            order_id: Local order id, carried in metadata for reconciliation
            customer_email: Carried in metadata
            customer_name: Carried in metadata
            idempotency_key: Stripe idempotency key; repeats return the same intent

        Returns:
            PaymentIntent with client_secret for the frontend
        """
        payload = {
            "amount": str(amount),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
            "metadata[orderId]": order_id,
            "metadata[customerEmail]": customer_email or "",
            "metadata[customerName]": customer_name or "",
            "description": f"StaySpace order {order_id}",
        }
        if customer_email:
            payload["receipt_email"] = customer_email

        data = await self._request(
            "POST", "/v1/payment_intents", data=payload, idempotency_key=idempotency_key
        )
        return PaymentIntent.from_stripe(data)

    async def get_intent(self, intent_id: str) -> PaymentIntent:
        data = await self._request("GET", f"/v1/payment_intents/{intent_id}")
        return PaymentIntent.from_stripe(data)

    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        data = await self._request("POST", f"/v1/payment_intents/{intent_id}/cancel")
        return PaymentIntent.from_stripe(data)

    # =========================================================================
    # Refund Methods
    # =========================================================================

    async def create_refund(
        self,
        intent_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Refund:
        """
        Refund a captured payment intent, fully when ``amount`` is omitted.
        """
        payload = {"payment_intent": intent_id}
        if amount is not None:
            payload["amount"] = str(amount)
        if reason:
            payload["reason"] = reason

        data = await self._request("POST", "/v1/refunds", data=payload)
        return Refund(
            id=data["id"],
            status=data.get("status", ""),
            amount=int(data.get("amount") or 0),
            payment_intent=data.get("payment_intent"),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, payload: bytes, signature_header: str) -> WebhookEvent:
        """Verify the signature over the raw body, then parse the event."""
        verify_stripe_signature(
            payload,
            signature_header,
            self.webhook_secret,
            tolerance=self.webhook_tolerance,
        )
        return parse_webhook_event(payload)


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the process-wide gateway handle."""
    return StripeClient()
