"""GNAP grant negotiation with Open Payments authorization servers."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from ...domain.errors import (
    GrantDeniedError,
    GrantNotReadyError,
    GrantRequestError,
    OpenPaymentsRequestError,
)
from ...domain.marketplace.entities import (
    AccessItem,
    FinalizedGrant,
    Grant,
    InteractRequest,
)
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)

DENIED_ERROR_CODES = frozenset({"user_denied", "request_denied"})
NOT_READY_ERROR_CODES = frozenset({"too_fast", "pending"})

_grant_adapter: TypeAdapter[Grant] = TypeAdapter(Grant)


def parse_grant(data: Any) -> Grant:
    """Classify a grant response as pending or finalized.

    A response must carry exactly one of `interact` and `access_token`.
    """
    if not isinstance(data, dict):
        raise GrantRequestError("Grant response is not a JSON object")
    has_interact = "interact" in data
    has_token = "access_token" in data
    if has_interact == has_token:
        raise GrantRequestError(
            "Grant response must contain exactly one of interact or access_token"
        )
    kind = "pending" if has_interact else "finalized"
    try:
        return _grant_adapter.validate_python({**data, "kind": kind})
    except ValidationError as e:
        raise GrantRequestError(f"Malformed {kind} grant response: {e}") from e


def build_grant_request(
    client: str,
    access: Sequence[AccessItem],
    interact: Optional[InteractRequest] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "access_token": {"access": [item.to_wire() for item in access]},
        "client": client,
    }
    if interact is not None:
        body["interact"] = interact.model_dump(mode="json", exclude_none=True)
    return body


class GrantClient:
    """Requests, continues and cancels grants on behalf of the client wallet."""

    def __init__(self, http: AsyncHttpClient, client_wallet_address: str):
        self._http = http
        self.client_wallet_address = client_wallet_address

    async def request_grant(
        self,
        auth_server_url: str,
        access: Sequence[AccessItem],
        interact: Optional[InteractRequest] = None,
    ) -> Grant:
        body = build_grant_request(self.client_wallet_address, access, interact)
        try:
            data = await self._http.post(auth_server_url, json=body)
        except OpenPaymentsRequestError as e:
            raise GrantRequestError(str(e)) from e
        grant = parse_grant(data)
        logger.info(
            "Grant requested from %s: %s (%s)",
            auth_server_url,
            grant.kind,
            ", ".join(item.type.value for item in access),
        )
        return grant

    async def continue_grant(
        self, continuation_uri: str, continuation_token: str, interact_ref: str
    ) -> Grant:
        try:
            data = await self._http.post(
                continuation_uri,
                json={"interact_ref": interact_ref},
                access_token=continuation_token,
            )
        except OpenPaymentsRequestError as e:
            if e.code in DENIED_ERROR_CODES:
                raise GrantDeniedError(
                    e.description or "Grant was denied by the wallet owner"
                ) from e
            if e.code in NOT_READY_ERROR_CODES:
                raise GrantNotReadyError(
                    e.description or "Grant interaction is not finished yet"
                ) from e
            raise GrantRequestError(str(e)) from e

        # A response with only `continue` means the user has not approved yet.
        if isinstance(data, dict) and "continue" in data and not (
            "access_token" in data or "interact" in data
        ):
            raise GrantNotReadyError("Grant interaction is not finished yet")

        grant = parse_grant(data)
        if isinstance(grant, FinalizedGrant):
            logger.info("Grant continued at %s and finalized", continuation_uri)
        return grant

    async def cancel_grant(
        self, continuation_uri: str, continuation_token: str
    ) -> None:
        try:
            await self._http.delete(continuation_uri, access_token=continuation_token)
        except OpenPaymentsRequestError as e:
            raise GrantRequestError(str(e)) from e
        logger.info("Grant at %s cancelled", continuation_uri)
