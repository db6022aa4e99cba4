"""HTTP Message Signatures for Open Payments requests.

Requests are signed with the client's Ed25519 key under the label ``sig1``.
The covered components are ``@method`` and ``@target-uri``, plus
``authorization`` when the request carries a token and the three body headers
(``content-digest``, ``content-length``, ``content-type``) when it has a body.
"""

from __future__ import annotations

import base64
import time
from typing import Callable, Mapping, Optional, Sequence

import httpx
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

SIGNATURE_LABEL = "sig1"
BODY_COMPONENTS = ("content-digest", "content-length", "content-type")


def create_content_digest(body: bytes) -> str:
    digest = hashes.Hash(hashes.SHA512())
    digest.update(body)
    return f"sha-512=:{base64.b64encode(digest.finalize()).decode('ascii')}:"


def covered_components(headers: Mapping[str, str], has_body: bool) -> list[str]:
    components = ["@method", "@target-uri"]
    if "authorization" in headers:
        components.append("authorization")
    if has_body:
        components.extend(BODY_COMPONENTS)
    return components


def signature_params(components: Sequence[str], key_id: str, created: int) -> str:
    quoted = " ".join(f'"{c}"' for c in components)
    return f'({quoted});keyid="{key_id}";created={created}'


def build_signature_base(
    method: str,
    url: str,
    headers: Mapping[str, str],
    components: Sequence[str],
    params: str,
) -> bytes:
    """Serialize the covered components into the string that gets signed."""
    lines = []
    for component in components:
        if component == "@method":
            value = method.upper()
        elif component == "@target-uri":
            value = url
        else:
            value = headers[component]
        lines.append(f'"{component}": {value}')
    lines.append(f'"@signature-params": {params}')
    return "\n".join(lines).encode("utf-8")


def should_sign(request: httpx.Request) -> bool:
    """Open Payments servers expect signatures on writes and on token-bearing requests."""
    return request.method.upper() == "POST" or "authorization" in request.headers


class HttpSignatureSigner:
    """Signs outgoing httpx requests with the client's Ed25519 key."""

    def __init__(
        self,
        private_key: Ed25519PrivateKey,
        key_id: str,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._private_key = private_key
        self.key_id = key_id
        self._clock = clock or time.time

    def sign(self, request: httpx.Request) -> None:
        """Add Content-Digest, Signature-Input and Signature headers in place."""
        body = request.content
        has_body = bool(body)
        if has_body:
            request.headers["Content-Digest"] = create_content_digest(body)
            request.headers.setdefault("Content-Length", str(len(body)))

        components = covered_components(request.headers, has_body)
        params = signature_params(components, self.key_id, int(self._clock()))
        base = build_signature_base(
            request.method, str(request.url), request.headers, components, params
        )
        signature = base64.b64encode(self._private_key.sign(base)).decode("ascii")

        request.headers["Signature-Input"] = f"{SIGNATURE_LABEL}={params}"
        request.headers["Signature"] = f"{SIGNATURE_LABEL}=:{signature}:"
