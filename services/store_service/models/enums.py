"""Enum definitions for store service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class InventoryMovementType(str, enum.Enum):
    SALE = "sale"
    RELEASE = "release"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RefundReason(str, enum.Enum):
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    REQUESTED_BY_CUSTOMER = "requested_by_customer"


class PaymentEventOutcome(str, enum.Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    OBSERVED = "observed"


class AuditEntityType(str, enum.Enum):
    ORDER = "order"
    PAYMENT = "payment"
