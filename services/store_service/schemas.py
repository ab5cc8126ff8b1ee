"""Pydantic schemas for store service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.store_service.models import OrderStatus, RefundReason

# ============================================================================
# ORDER PLACEMENT SCHEMAS
# ============================================================================


class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=100)


class OrderItemCreate(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(..., ge=1, le=1000)
    # Price the customer saw; rejected if it no longer matches the live price
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)


class OrderCreate(BaseModel):
    """Place an order.

    Emptiness of ``items`` and absence of ``shipping_address`` are reported by
    the placement operation itself as invalid input.
    """

    items: list[OrderItemCreate] = Field(default_factory=list, max_length=100)
    shipping_address: Optional[ShippingAddress] = None
    customer_notes: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    image_url: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    user_id: str
    status: OrderStatus

    customer_email: Optional[str]
    customer_name: Optional[str]

    total_amount: Decimal
    amount_refunded: Decimal
    currency: str

    shipping_address: ShippingAddress
    payment_id: Optional[str]

    tracking_number: Optional[str]
    carrier: Optional[str]
    customer_notes: Optional[str]
    admin_notes: Optional[str] = None

    paid_at: Optional[datetime]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemResponse] = []


class OrderListResponse(BaseModel):
    """Paginated order list."""

    items: list[OrderResponse]
    total: int
    page: int
    page_size: int


class OrderStatusUpdate(BaseModel):
    """Update order status (admin)."""

    status: OrderStatus
    tracking_number: Optional[str] = Field(None, max_length=100)
    carrier: Optional[str] = Field(None, max_length=100)
    admin_notes: Optional[str] = None


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================


class PaymentIntentCreate(BaseModel):
    order_id: uuid.UUID


class PaymentIntentResponse(BaseModel):
    """Client secret for the frontend to confirm the payment."""

    client_secret: Optional[str]
    payment_intent_id: str
    amount: int  # minor units
    currency: str
    order_id: uuid.UUID


class PaymentStatusResponse(BaseModel):
    payment_intent_id: str
    status: str
    amount: Decimal  # major units
    currency: str
    order_id: uuid.UUID
    order_status: OrderStatus


class PaymentConfigResponse(BaseModel):
    publishable_key: str
    currency: str


class RefundCreate(BaseModel):
    """Refund an order (admin). Omitting ``amount`` refunds the remaining balance."""

    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER


class RefundResponse(BaseModel):
    refund_id: str
    status: str
    amount: Decimal  # major units
    currency: str
    order_id: uuid.UUID
    order_status: OrderStatus
    amount_refunded: Decimal


class WebhookAck(BaseModel):
    received: bool = True
