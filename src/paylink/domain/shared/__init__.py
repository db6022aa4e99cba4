"""Shared domain utilities.

This package is domain-accessible and should not depend on application code.
"""

from .open_payments_protocols import (
    GrantNegotiatorProtocol,
    ResourceClientProtocol,
    WalletResolverProtocol,
)

__all__ = [
    "GrantNegotiatorProtocol",
    "ResourceClientProtocol",
    "WalletResolverProtocol",
]
