"""FastAPI dependencies for the marketplace API.

The long-lived collaborators (HTTP client, pending payment repository and
purchase service) are built once in the application lifespan and kept on
`app.state`; these functions hand them to the routers.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, Request, status

from ...application.marketplace.use_cases.purchase import PurchaseService
from ...application.marketplace.use_cases.settlement import SettlementPoller
from ...crypto.http_signatures import HttpSignatureSigner
from ...crypto.key_utils import load_ed25519_private_key
from ...domain.marketplace.pending_payment_repository import (
    PendingPaymentRepository,
)
from ...envs.marketplace_env import Settings
from ...infrastructure.http.http_client import AsyncHttpClient
from ...infrastructure.marketplace.pending_payment_repository_impl import (
    PendingPaymentRepositoryImpl,
)
from ...infrastructure.open_payments.grant_client import GrantClient
from ...infrastructure.open_payments.resource_client import ResourceServerClient
from ...infrastructure.open_payments.wallet_address_client import (
    WalletAddressClient,
)
from ...infrastructure.storage import InMemoryKeyValueStore

logger = logging.getLogger(__name__)


def build_http_client(settings: Settings) -> AsyncHttpClient:
    """HTTP client that signs requests when a key is configured."""
    signer: Optional[HttpSignatureSigner] = None
    if settings.signing_configured:
        signer = HttpSignatureSigner(
            load_ed25519_private_key(settings.private_key_pem),
            settings.key_id,
        )
    else:
        logger.warning(
            "PAYLINK_PRIVATE_KEY_PEM/PAYLINK_KEY_ID not set; "
            "Open Payments requests will not be signed"
        )
    return AsyncHttpClient(signer=signer, timeout=settings.request_timeout_seconds)


def build_pending_payment_repository(settings: Settings) -> PendingPaymentRepository:
    return PendingPaymentRepositoryImpl(
        InMemoryKeyValueStore(), ttl_seconds=settings.pending_payment_ttl_seconds
    )


def build_purchase_service(
    settings: Settings,
    http: AsyncHttpClient,
    repository: PendingPaymentRepository,
) -> PurchaseService:
    return PurchaseService(
        wallet_resolver=WalletAddressClient(http),
        grant_negotiator=GrantClient(http, settings.client_wallet_address),
        resource_client=ResourceServerClient(http),
        pending_payment_repository=repository,
        settlement_poller=SettlementPoller(
            interval_seconds=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
        ),
        callback_url_builder=settings.callback_url,
    )


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def get_wallet_address_client(request: Request) -> WalletAddressClient:
    return request.app.state.wallet_address_client


def get_pending_payment_repository(request: Request) -> PendingPaymentRepository:
    return request.app.state.pending_payment_repository


def get_purchase_service(request: Request) -> PurchaseService:
    """Get the purchase service, or 503 when the signing key is missing."""
    service: Optional[PurchaseService] = request.app.state.purchase_service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment service unavailable: Open Payments client is not configured",
        )
    return service
