from __future__ import annotations

import json as jsonlib
import logging
from typing import Any, Optional, Type
from types import TracebackType

import httpx

from ...crypto.http_signatures import HttpSignatureSigner, should_sign
from ...domain.errors import OpenPaymentsRequestError

logger = logging.getLogger(__name__)


def _describe_error_response(
    response: httpx.Response,
) -> tuple[Optional[str], Optional[str]]:
    """Extract (code, description) from a GNAP or resource server error body."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text or response.reason_phrase or None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("code"), error.get("description")
        if isinstance(error, str):
            return error, body.get("message") or body.get("error_description")
        return None, body.get("message")
    return None, None


class AsyncHttpClient:
    """Thin asynchronous HTTP client wrapper around httpx.AsyncClient.

    - Signs outgoing requests when a signer is configured.
    - Attaches GNAP access tokens.
    - Applies a default timeout.
    - Wraps transport and status failures in OpenPaymentsRequestError.
    """

    def __init__(
        self,
        *,
        signer: Optional[HttpSignatureSigner] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._signer = signer
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def signs_requests(self) -> bool:
        return self._signer is not None

    async def get(self, url: str, *, access_token: Optional[str] = None) -> Any:
        resp = await self._send("GET", url, access_token=access_token)
        return self._json(resp, "GET", url)

    async def post(
        self,
        url: str,
        *,
        json: Optional[dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Any:
        resp = await self._send("POST", url, json=json, access_token=access_token)
        return self._json(resp, "POST", url)

    async def delete(self, url: str, *, access_token: Optional[str] = None) -> None:
        await self._send("DELETE", url, access_token=access_token)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        json: Optional[dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        content: Optional[bytes] = None
        if access_token:
            headers["Authorization"] = f"GNAP {access_token}"
        if json is not None:
            content = jsonlib.dumps(json, separators=(",", ":")).encode("utf-8")
            headers["Content-Type"] = "application/json"

        request = self._client.build_request(method, url, content=content, headers=headers)
        if self._signer is not None and should_sign(request):
            self._signer.sign(request)

        try:
            resp = await self._client.send(request)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            code, description = _describe_error_response(e.response)
            logger.warning(
                "Open Payments %s %s failed with status %s (%s)",
                method,
                url,
                e.response.status_code,
                code or description,
            )
            raise OpenPaymentsRequestError(
                method,
                url,
                status=e.response.status_code,
                code=code,
                description=description,
            ) from e
        except httpx.RequestError as e:
            logger.warning("Open Payments %s %s failed: %r", method, url, e)
            raise OpenPaymentsRequestError(
                method, url, description=str(e) or type(e).__name__
            ) from e
        return resp

    @staticmethod
    def _json(resp: httpx.Response, method: str, url: str) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise OpenPaymentsRequestError(
                method,
                url,
                status=resp.status_code,
                description="Response body is not valid JSON",
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncHttpClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.aclose()
