from __future__ import annotations

import base64
import binascii

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


def normalize_private_key_pem(raw: str) -> str:
    """Accept a PEM as-is, with escaped newlines, or base64-encoded as a whole."""
    text = raw.strip().replace("\\n", "\n")
    if "-----BEGIN" in text:
        return text + "\n"
    try:
        decoded = base64.b64decode(text, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError("Private key is neither PEM nor base64-encoded PEM") from e
    if "-----BEGIN" not in decoded:
        raise ValueError("Private key is neither PEM nor base64-encoded PEM")
    return decoded.strip() + "\n"


def load_ed25519_private_key(private_key_pem: str) -> Ed25519PrivateKey:
    private_key = serialization.load_pem_private_key(
        normalize_private_key_pem(private_key_pem).encode(),
        password=None,
    )
    if not isinstance(private_key, Ed25519PrivateKey):
        raise ValueError("Open Payments client keys must be Ed25519")
    return private_key

