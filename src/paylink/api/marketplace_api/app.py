"""FastAPI application configuration (Marketplace API)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from ...domain.errors import ResolutionError
from ...domain.marketplace.pending_payment_repository import (
    PendingPaymentRepository,
)
from ...envs.marketplace_env import Settings, get_settings
from ...infrastructure.open_payments.wallet_address_client import (
    WalletAddressClient,
)
from .dependencies import (
    build_http_client,
    build_pending_payment_repository,
    build_purchase_service,
    get_pending_payment_repository,
    get_settings_from_app,
    get_wallet_address_client,
)
from .routers import marketplace

logger = logging.getLogger(__name__)


async def _sweep_expired_payments(
    repository: PendingPaymentRepository, interval_seconds: float
) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        removed = await repository.expire()
        if removed:
            logger.info("Expired %d abandoned pending payments", removed)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        http = build_http_client(settings)
        repository = build_pending_payment_repository(settings)
        app.state.settings = settings
        app.state.pending_payment_repository = repository
        app.state.wallet_address_client = WalletAddressClient(http)
        app.state.purchase_service = (
            build_purchase_service(settings, http, repository)
            if http.signs_requests
            else None
        )
        sweeper = asyncio.create_task(
            _sweep_expired_payments(repository, settings.pending_payment_sweep_seconds)
        )
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await http.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="PayLink ticket marketplace API over Open Payments",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Include routers
    app.include_router(marketplace.router, prefix="/api")
    app.mount("/metrics", make_asgi_app())

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": f"Welcome to {settings.app_name} Marketplace API",
            "version": settings.app_version,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check(
        app_settings: Settings = Depends(get_settings_from_app),
        wallets: WalletAddressClient = Depends(get_wallet_address_client),
        repository: PendingPaymentRepository = Depends(get_pending_payment_repository),
    ) -> dict[str, Any]:
        """Health check endpoint; resolves the merchant wallet to prove connectivity."""
        body: dict[str, Any] = {
            "status": "healthy",
            "service": f"{app_settings.app_name} Marketplace",
            "version": app_settings.app_version,
            "signing": "configured" if app_settings.signing_configured else "missing",
            "activePayments": await repository.count(),
        }
        try:
            wallet = await wallets.resolve(app_settings.merchant_wallet_address)
            body["merchantWallet"] = {
                "id": wallet.id,
                "assetCode": wallet.asset_code,
                "assetScale": wallet.asset_scale,
            }
        except ResolutionError as e:
            logger.warning("Health check could not resolve merchant wallet: %s", e)
            body["status"] = "degraded"
            body["merchantWallet"] = {"error": str(e)}
        if not app_settings.signing_configured:
            body["status"] = "degraded"
        return body

    @app.get("/api/info")
    async def api_info(
        app_settings: Settings = Depends(get_settings_from_app),
    ) -> dict[str, Any]:
        """Describe the marketplace endpoints and configured wallets."""
        return {
            "name": app_settings.app_name,
            "version": app_settings.app_version,
            "clientWalletAddress": app_settings.client_wallet_address,
            "merchantWalletAddress": app_settings.merchant_wallet_address,
            "endpoints": {
                "createPayment": "POST /api/marketplace/create-payment",
                "callback": "GET /api/marketplace/callback/{paymentId}",
                "completePayment": "POST /api/marketplace/complete-payment",
                "cancelPayment": "POST /api/marketplace/cancel-payment",
                "paymentStatus": "GET /api/marketplace/payment-status/{paymentId}",
                "health": "GET /health",
                "metrics": "GET /metrics",
            },
        }

    return app


app = create_app()
