import hashlib
import hmac
import json
import time
import uuid
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.session import get_async_db
from services.store_service import models as _store_models  # noqa: F401
from services.store_service.app.main import app
from services.store_service.errors import GatewayError
from services.store_service.stripe_client import (
    PaymentIntent,
    Refund,
    WebhookEvent,
    get_payment_gateway,
    parse_webhook_event,
    verify_stripe_signature,
)

settings = get_settings()

WEBHOOK_SECRET = "whsec_test_secret"

CUSTOMER = AuthUser(
    sub="user-1", email="buyer@example.com", name="Test Buyer", role="customer"
)
OTHER_CUSTOMER = AuthUser(
    sub="user-2", email="other@example.com", name="Other Buyer", role="customer"
)
ADMIN = AuthUser(sub="admin-1", email="admin@example.com", name="Admin", role="admin")


# ---------------------------------------------------------------------------
# Payment gateway double
# ---------------------------------------------------------------------------


class FakeGateway:
    """In-memory stand-in for the Stripe client."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret
        self.intents: dict[str, PaymentIntent] = {}
        self.refunds: list[Refund] = []
        self.calls: list[tuple] = []
        self.fail_with: Optional[GatewayError] = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def create_intent(
        self,
        amount,
        currency,
        order_id,
        customer_email,
        customer_name,
        idempotency_key=None,
    ):
        self.calls.append(("create_intent", order_id, idempotency_key))
        self._maybe_fail()
        intent_id = f"pi_{uuid.uuid4().hex[:16]}"
        intent = PaymentIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret_test",
            metadata={
                "orderId": order_id,
                "customerEmail": customer_email or "",
                "customerName": customer_name or "",
            },
        )
        self.intents[intent_id] = intent
        return intent

    async def get_intent(self, intent_id):
        self.calls.append(("get_intent", intent_id))
        self._maybe_fail()
        return self.intents[intent_id]

    async def cancel_intent(self, intent_id):
        self.calls.append(("cancel_intent", intent_id))
        self._maybe_fail()
        intent = self.intents[intent_id]
        intent.status = "canceled"
        return intent

    async def create_refund(self, intent_id, amount=None, reason=None):
        self.calls.append(("create_refund", intent_id, amount, reason))
        self._maybe_fail()
        intent = self.intents.get(intent_id)
        already = sum(r.amount for r in self.refunds if r.payment_intent == intent_id)
        if amount is not None:
            refunded = amount
        else:
            refunded = (intent.amount if intent else 0) - already
        refund = Refund(
            id=f"re_{uuid.uuid4().hex[:16]}",
            status="succeeded",
            amount=refunded,
            payment_intent=intent_id,
        )
        self.refunds.append(refund)
        return refund

    def verify_webhook(self, payload: bytes, signature_header: str) -> WebhookEvent:
        verify_stripe_signature(payload, signature_header, self.webhook_secret)
        return parse_webhook_event(payload)


# ---------------------------------------------------------------------------
# Webhook helpers
# ---------------------------------------------------------------------------


def sign_payload(
    payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None
) -> str:
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event_payload(
    event_type: str, data_object: dict, event_id: Optional[str] = None
) -> bytes:
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": data_object},
        }
    ).encode("utf-8")


def succeeded_intent(order, intent_id: str, amount: Optional[int] = None) -> dict:
    """A payment_intent.succeeded data object for ``order``."""
    from libs.common.currency import to_minor_units

    amount = to_minor_units(order.total_amount) if amount is None else amount
    return {
        "id": intent_id,
        "object": "payment_intent",
        "status": "succeeded",
        "amount": amount,
        "amount_received": amount,
        "currency": order.currency,
        "metadata": {"orderId": str(order.id)},
    }


def auth_headers(user: AuthUser) -> dict:
    token = jwt.encode(
        {
            "sub": user.user_id,
            "email": user.email,
            "name": user.name,
            "role": user.role,
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    File-backed SQLite per test, so separate sessions see each other's commits.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def client(session_factory, fake_gateway) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient with the DB and gateway dependencies overridden.

    Every request gets its own session, as in production.
    """

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
