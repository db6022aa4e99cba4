"""Protocol interfaces for the Open Payments collaborators of the purchase flow.

Services depend on these instead of the concrete httpx-backed clients, so the
orchestrator can be exercised against in-memory fakes.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..marketplace.entities import (
        AccessItem,
        Amount,
        Grant,
        IncomingPayment,
        InteractRequest,
        OutgoingPayment,
        Quote,
        WalletAddress,
    )


class WalletResolverProtocol(Protocol):
    async def resolve(self, wallet_uri: str) -> WalletAddress:
        """Fetch the public description of a wallet address."""
        ...


class GrantNegotiatorProtocol(Protocol):
    async def request_grant(
        self,
        auth_server_url: str,
        access: Sequence[AccessItem],
        interact: Optional[InteractRequest] = None,
    ) -> Grant:
        """Ask an authorization server for a grant."""
        ...

    async def continue_grant(
        self, continuation_uri: str, continuation_token: str, interact_ref: str
    ) -> Grant:
        """Exchange an interaction reference for a finalized grant."""
        ...

    async def cancel_grant(
        self, continuation_uri: str, continuation_token: str
    ) -> None:
        """Revoke a grant that is no longer needed."""
        ...


class ResourceClientProtocol(Protocol):
    async def create_incoming_payment(
        self,
        resource_server: str,
        access_token: str,
        *,
        wallet_address: str,
        incoming_amount: Amount,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IncomingPayment: ...

    async def create_quote(
        self,
        resource_server: str,
        access_token: str,
        *,
        wallet_address: str,
        receiver: str,
        method: str = "ilp",
    ) -> Quote: ...

    async def create_outgoing_payment(
        self,
        resource_server: str,
        access_token: str,
        *,
        wallet_address: str,
        quote_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> OutgoingPayment: ...

    async def get_outgoing_payment(
        self, resource_server: str, access_token: str, outgoing_payment_id: str
    ) -> OutgoingPayment: ...
