"""Store Service models package."""

from services.store_service.models.catalog import Product
from services.store_service.models.commerce import (
    ALLOWED_TRANSITIONS,
    CANCELLABLE_STATUSES,
    Order,
    OrderItem,
    StoreAuditLog,
)
from services.store_service.models.enums import (
    AuditEntityType,
    InventoryMovementType,
    OrderStatus,
    PaymentEventOutcome,
    RefundReason,
)
from services.store_service.models.inventory import InventoryMovement
from services.store_service.models.payments import PaymentEvent

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AuditEntityType",
    "CANCELLABLE_STATUSES",
    "InventoryMovement",
    "InventoryMovementType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentEvent",
    "PaymentEventOutcome",
    "Product",
    "RefundReason",
    "StoreAuditLog",
]
