from __future__ import annotations

import logging
from urllib.parse import urlsplit

from pydantic import ValidationError

from ...domain.errors import OpenPaymentsRequestError, ResolutionError
from ...domain.marketplace.entities import WalletAddress
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)


def normalize_wallet_address_uri(wallet_uri: str) -> str:
    """Turn a wallet address or `$host/path` payment pointer into an https URL.

    Trailing slashes are dropped so two spellings of one wallet compare equal.
    """
    uri = wallet_uri.strip()
    if not uri:
        raise ResolutionError("Wallet address is empty")
    if uri.startswith("$"):
        uri = f"https://{uri[1:]}"
    parts = urlsplit(uri)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ResolutionError(f"Wallet address {wallet_uri!r} is not an http(s) URL")
    return f"{parts.scheme}://{parts.netloc.lower()}{parts.path.rstrip('/')}"


class WalletAddressClient:
    """Resolves wallet addresses to their public descriptions."""

    def __init__(self, http: AsyncHttpClient):
        self._http = http

    async def resolve(self, wallet_uri: str) -> WalletAddress:
        url = normalize_wallet_address_uri(wallet_uri)
        try:
            data = await self._http.get(url)
        except OpenPaymentsRequestError as e:
            raise ResolutionError(str(e)) from e
        try:
            wallet = WalletAddress.model_validate(data)
        except ValidationError as e:
            raise ResolutionError(
                f"Wallet address {url} returned an invalid document"
            ) from e
        logger.debug(
            "Resolved wallet %s (%s, scale %s)",
            wallet.id,
            wallet.asset_code,
            wallet.asset_scale,
        )
        return wallet
