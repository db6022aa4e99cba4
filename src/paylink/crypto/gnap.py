from __future__ import annotations

import base64
import secrets

from cryptography.hazmat.primitives import hashes


def generate_interact_nonce() -> str:
    return secrets.token_urlsafe(16)


def _interaction_digest(
    client_nonce: str, server_finish: str, interact_ref: str, grant_endpoint: str
) -> bytes:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(
        "\n".join([client_nonce, server_finish, interact_ref, grant_endpoint]).encode(
            "utf-8"
        )
    )
    return digest.finalize()


def compute_interaction_hash(
    client_nonce: str, server_finish: str, interact_ref: str, grant_endpoint: str
) -> str:
    """Hash the authorization server attaches to the interaction finish redirect."""
    raw = _interaction_digest(client_nonce, server_finish, interact_ref, grant_endpoint)
    return base64.b64encode(raw).decode("ascii")


def verify_interaction_hash(
    received_hash: str,
    *,
    client_nonce: str,
    server_finish: str,
    interact_ref: str,
    grant_endpoint: str,
) -> bool:
    """Check a redirect hash; both standard and unpadded base64url encodings are accepted."""
    raw = _interaction_digest(client_nonce, server_finish, interact_ref, grant_endpoint)
    candidates = (
        base64.b64encode(raw).decode("ascii"),
        base64.urlsafe_b64encode(raw).decode("ascii").rstrip("="),
    )
    return any(secrets.compare_digest(received_hash, c) for c in candidates)
