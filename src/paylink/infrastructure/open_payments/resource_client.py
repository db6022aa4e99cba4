from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar

from pydantic import ValidationError

from ...domain.errors import InvariantViolation
from ...domain.marketplace.entities import (
    Amount,
    IncomingPayment,
    OpenPaymentsModel,
    OutgoingPayment,
    Quote,
)
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=OpenPaymentsModel)


def _collection_url(resource_server: str, collection: str) -> str:
    return f"{resource_server.rstrip('/')}/{collection}"


def _resource_url(resource_server: str, collection: str, resource_id: str) -> str:
    # Resource ids are normally absolute URLs already.
    if resource_id.startswith("http://") or resource_id.startswith("https://"):
        return resource_id
    return f"{_collection_url(resource_server, collection)}/{resource_id}"


def _parse(model: Type[ModelT], data: Any, url: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvariantViolation(
            f"Malformed {model.__name__} response from {url}: {e}"
        ) from e


class ResourceServerClient:
    """Creates and reads incoming payments, quotes and outgoing payments."""

    def __init__(self, http: AsyncHttpClient):
        self._http = http

    async def create_incoming_payment(
        self,
        resource_server: str,
        access_token: str,
        *,
        wallet_address: str,
        incoming_amount: Amount,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IncomingPayment:
        url = _collection_url(resource_server, "incoming-payments")
        body: dict[str, Any] = {
            "walletAddress": wallet_address,
            "incomingAmount": incoming_amount.to_wire(),
        }
        if metadata:
            body["metadata"] = metadata
        data = await self._http.post(url, json=body, access_token=access_token)
        payment = _parse(IncomingPayment, data, url)
        logger.info("Incoming payment created: %s", payment.id)
        return payment

    async def create_quote(
        self,
        resource_server: str,
        access_token: str,
        *,
        wallet_address: str,
        receiver: str,
        method: str = "ilp",
    ) -> Quote:
        url = _collection_url(resource_server, "quotes")
        body = {"walletAddress": wallet_address, "receiver": receiver, "method": method}
        data = await self._http.post(url, json=body, access_token=access_token)
        quote = _parse(Quote, data, url)
        logger.info(
            "Quote created: %s (debit %s %s, receive %s %s)",
            quote.id,
            quote.debit_amount.value,
            quote.debit_amount.asset_code,
            quote.receive_amount.value,
            quote.receive_amount.asset_code,
        )
        return quote

    async def create_outgoing_payment(
        self,
        resource_server: str,
        access_token: str,
        *,
        wallet_address: str,
        quote_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> OutgoingPayment:
        url = _collection_url(resource_server, "outgoing-payments")
        body: dict[str, Any] = {"walletAddress": wallet_address, "quoteId": quote_id}
        if metadata:
            body["metadata"] = metadata
        data = await self._http.post(url, json=body, access_token=access_token)
        payment = _parse(OutgoingPayment, data, url)
        logger.info("Outgoing payment created: %s (%s)", payment.id, payment.state)
        return payment

    async def get_outgoing_payment(
        self, resource_server: str, access_token: str, outgoing_payment_id: str
    ) -> OutgoingPayment:
        url = _resource_url(resource_server, "outgoing-payments", outgoing_payment_id)
        data = await self._http.get(url, access_token=access_token)
        return _parse(OutgoingPayment, data, url)
