"""FastAPI application for the Store Service."""

import uvicorn
from fastapi import FastAPI
from libs.common.config import get_settings
from libs.common.middleware import add_observability_middleware
from services.store_service.errors import register_error_handlers
from services.store_service.routers import (
    admin_orders_router,
    orders_router,
    payments_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Store Service FastAPI app."""
    app = FastAPI(
        title="StaySpace Store Service",
        version="0.1.0",
        description="Order placement, inventory reservation, Stripe payments and refunds.",
    )

    add_observability_middleware(app)
    register_error_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "store"}

    # Customer routes (orders, payments, webhook)
    app.include_router(orders_router, prefix="/store")
    app.include_router(payments_router, prefix="/store")
    app.include_router(webhooks_router, prefix="/store")

    # Admin routes (order management, refunds)
    app.include_router(admin_orders_router, prefix="/admin/store")

    return app


app = create_app()


def run() -> None:
    """Serve the Store Service with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "services.store_service.app.main:app",
        host=settings.STORE_SERVICE_HOST,
        port=settings.STORE_SERVICE_PORT,
        reload=settings.ENVIRONMENT == "local",
        log_config=None,
    )


if __name__ == "__main__":
    run()
