"""Shared pytest fixtures for marketplace payment tests."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from paylink.domain.marketplace.entities import WalletAddress
from tests.fixtures import make_wallet


@pytest.fixture
def client_key_pair() -> tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    """Generate the marketplace client's signing key pair."""
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


@pytest.fixture
def client_private_key_pem(
    client_key_pair: tuple[Ed25519PrivateKey, Ed25519PublicKey],
) -> str:
    private_key, _ = client_key_pair
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def merchant_wallet() -> WalletAddress:
    return make_wallet("merchant")


@pytest.fixture
def buyer_wallet() -> WalletAddress:
    return make_wallet("buyer")

