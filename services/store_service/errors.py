"""Domain errors raised by the store service operations.

Each error carries the HTTP status it maps to; ``register_error_handlers``
turns them into JSON responses at the API boundary.
"""

import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger

logger = get_logger(__name__)


class StoreError(Exception):
    """Base class for store domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "store_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class InvalidInput(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class NotFound(StoreError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class AccessDenied(StoreError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "access_denied"


class InsufficientStock(StoreError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_stock"

    def __init__(self, product_id: uuid.UUID, product_name: str, available: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(product_id=str(self.product_id), available=self.available)
        return data


class InvalidTransition(StoreError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class AlreadyExists(StoreError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_exists"


class InvalidSignature(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_signature"


class NoPayment(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "no_payment"


class TransactionAbort(StoreError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transaction_abort"


class GatewayError(StoreError):
    """
    Payment processor failure.

    ``outcome_unknown`` is True when the request may have reached the processor
    (timeout after sending, dropped connection). Callers must check the payment
    status before retrying in that case.
    """

    code = "gateway_error"

    def __init__(
        self,
        message: str,
        *,
        outcome_unknown: bool = False,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.outcome_unknown = outcome_unknown
        self.upstream_status = status_code
        self.response_data = response_data or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if self.outcome_unknown:
            return status.HTTP_504_GATEWAY_TIMEOUT
        return status.HTTP_502_BAD_GATEWAY

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["outcome_unknown"] = self.outcome_unknown
        return data


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(
            "Store operation failed",
            extra={"extra_fields": {"code": exc.code, "error": exc.message}},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoreError, store_error_handler)
