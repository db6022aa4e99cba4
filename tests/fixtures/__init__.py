"""Fake Open Payments collaborators and builders shared by the tests."""

from .open_payments_fakes import (
    FakeGrantNegotiator,
    FakeResourceClient,
    FakeWalletResolver,
    make_finalized_grant,
    make_outgoing_payment,
    make_pending_grant,
    make_wallet,
)

__all__ = [
    "FakeGrantNegotiator",
    "FakeResourceClient",
    "FakeWalletResolver",
    "make_finalized_grant",
    "make_outgoing_payment",
    "make_pending_grant",
    "make_wallet",
]
