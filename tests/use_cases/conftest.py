"""Pytest fixtures for use case tests."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import pytest

from paylink.application.marketplace.use_cases.purchase import PurchaseService
from paylink.application.marketplace.use_cases.settlement import SettlementPoller
from paylink.domain.marketplace.entities import WalletAddress
from paylink.infrastructure.marketplace.pending_payment_repository_impl import (
    PendingPaymentRepositoryImpl,
)
from paylink.infrastructure.storage import InMemoryKeyValueStore
from tests.fixtures import FakeGrantNegotiator, FakeResourceClient, FakeWalletResolver


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def wallet_resolver(
    merchant_wallet: WalletAddress, buyer_wallet: WalletAddress
) -> FakeWalletResolver:
    return FakeWalletResolver([merchant_wallet, buyer_wallet])


@pytest.fixture
def grant_negotiator() -> FakeGrantNegotiator:
    return FakeGrantNegotiator()


@pytest.fixture
def resource_client() -> FakeResourceClient:
    return FakeResourceClient()


@pytest.fixture
def pending_payment_repository() -> PendingPaymentRepositoryImpl:
    return PendingPaymentRepositoryImpl(InMemoryKeyValueStore())


@pytest.fixture
def make_purchase_service(
    wallet_resolver: FakeWalletResolver,
    grant_negotiator: FakeGrantNegotiator,
    resource_client: FakeResourceClient,
    pending_payment_repository: PendingPaymentRepositoryImpl,
) -> Callable[..., PurchaseService]:
    """Build a service over the shared fakes, with a replaceable poll sleep."""

    def build(
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> PurchaseService:
        return PurchaseService(
            wallet_resolver=wallet_resolver,
            grant_negotiator=grant_negotiator,
            resource_client=resource_client,
            pending_payment_repository=pending_payment_repository,
            settlement_poller=SettlementPoller(
                interval_seconds=2.0, max_attempts=10, sleep=sleep or _no_sleep
            ),
            callback_url_builder=lambda pid: f"https://shop.example/api/marketplace/callback/{pid}",
        )

    return build


@pytest.fixture
def purchase_service(make_purchase_service) -> PurchaseService:
    return make_purchase_service()
