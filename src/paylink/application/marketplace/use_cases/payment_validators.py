"""Pure validation functions for Open Payments resources.

These functions contain the amount and state consistency rules every
server response must satisfy. They can be tested in isolation without
dependencies on repositories or infrastructure.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Optional, Union

from ....domain.errors import InvariantViolation
from ....domain.marketplace.entities import (
    Amount,
    IncomingPayment,
    OutgoingPayment,
    Quote,
    WalletAddress,
)


def parse_amount(amount: Union[Decimal, int, float, str]) -> Decimal:
    """Parse a human-entered amount into a positive, finite Decimal.

    Raises:
        ValueError: If the amount is not a positive number.
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Amount must be a positive number, got {amount!r}")
    return value


def to_minor_units(amount: Union[Decimal, int, float, str], asset_scale: int) -> str:
    """Convert a decimal amount into minor units of an asset, rounding half up.

    Args:
        amount: Amount in major units (e.g. 10.00 dollars)
        asset_scale: Number of decimal places of the asset (2 for USD)

    Returns:
        Non-negative integer string, e.g. "1000" for 10.00 at scale 2.
    """
    if asset_scale < 0:
        raise ValueError(f"Asset scale must be non-negative, got {asset_scale}")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value < 0:
        raise ValueError(f"Amount must be a non-negative number, got {amount!r}")
    # Exact for any scale the asset allows (0..255).
    with localcontext() as ctx:
        parts = value.as_tuple()
        ctx.prec = max(28, len(parts.digits) + max(parts.exponent, 0) + asset_scale + 2)
        minor = value.scaleb(asset_scale).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return str(int(minor))


def from_minor_units(value: Union[str, int], asset_scale: int) -> Decimal:
    """Inverse of `to_minor_units` for display purposes."""
    minor = Decimal(int(value))
    with localcontext() as ctx:
        ctx.prec = max(28, len(minor.as_tuple().digits) + 2)
        return minor.scaleb(-asset_scale)


def validate_incoming_payment(payment: IncomingPayment) -> IncomingPayment:
    """Check the asset consistency of an incoming payment.

    Raises:
        InvariantViolation: If incoming and received amounts use different assets.
    """
    if payment.incoming_amount is not None and not payment.incoming_amount.is_compatible(
        payment.received_amount
    ):
        raise InvariantViolation(
            "Incoming amount asset code or asset scale does not match up received amount"
        )
    return payment


def validate_created_incoming_payment(
    payment: IncomingPayment, expected_amount: Optional[Amount] = None
) -> IncomingPayment:
    """Validate an incoming payment that was just created.

    Raises:
        InvariantViolation: If the payment already received money, is already
            completed, or does not ask for the requested amount.
    """
    if payment.received_amount.as_int() != 0:
        raise InvariantViolation("Received amount is a non-zero value")
    if payment.completed:
        raise InvariantViolation("Can not create a completed incoming payment")
    if expected_amount is not None:
        incoming = payment.incoming_amount
        if incoming is None or incoming != expected_amount:
            raise InvariantViolation(
                f"Incoming payment {payment.id} does not request the expected amount "
                f"{expected_amount.value} {expected_amount.asset_code}"
            )
    return validate_incoming_payment(payment)


def validate_quote(
    quote: Quote,
    *,
    receiver: str,
    sender_wallet: WalletAddress,
    receiver_wallet: WalletAddress,
) -> Quote:
    """Check that a quote pays the intended receiver in the expected assets.

    Raises:
        InvariantViolation: On receiver or asset mismatch, or a negative fee.
    """
    if quote.receiver != receiver:
        raise InvariantViolation(
            f"Quote {quote.id} targets {quote.receiver}, expected {receiver}"
        )
    debit = quote.debit_amount
    if (debit.asset_code, debit.asset_scale) != (
        sender_wallet.asset_code,
        sender_wallet.asset_scale,
    ):
        raise InvariantViolation(
            "Quote debit amount asset does not match the sending wallet"
        )
    receive = quote.receive_amount
    if (receive.asset_code, receive.asset_scale) != (
        receiver_wallet.asset_code,
        receiver_wallet.asset_scale,
    ):
        raise InvariantViolation(
            "Quote receive amount asset does not match the receiving wallet"
        )
    fee = quote.fee
    if fee is not None and fee < 0:
        raise InvariantViolation(
            f"Quote {quote.id} debits {debit.value} but delivers {receive.value}"
        )
    return quote


def validate_outgoing_payment(payment: OutgoingPayment) -> OutgoingPayment:
    """Check the amount consistency of an outgoing payment.

    Raises:
        InvariantViolation: If sent and debit amounts use different assets,
            more was sent than debited, or a fully sent payment is marked failed.
    """
    debit = payment.debit_amount
    sent = payment.sent_amount
    if not debit.is_compatible(sent):
        raise InvariantViolation(
            "Asset code or asset scale of debit amount does not match sent amount"
        )
    if sent.as_int() > debit.as_int():
        raise InvariantViolation("Amount sent is larger than maximum amount to send")
    if sent.as_int() == debit.as_int() and payment.failed:
        raise InvariantViolation("Amount to send matches sent amount but payment failed")
    return payment
