"""Domain-specific exceptions."""

from __future__ import annotations

from typing import Optional


class PaylinkError(Exception):
    """Base class for every marketplace payment error."""


class OpenPaymentsRequestError(PaylinkError):
    """Raised when an HTTP request to an Open Payments server fails.

    Carries the request method and URL so callers can tell which step of the
    flow broke, plus whatever status and GNAP error code the server returned.
    """

    def __init__(
        self,
        method: str,
        url: str,
        *,
        status: Optional[int] = None,
        code: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.method = method
        self.url = url
        self.status = status
        self.code = code
        self.description = description

        message = f"Error making Open Payments {method} request to {url}"
        if status is not None:
            message += f" (status {status})"
        if description:
            message += f": {description}"
        super().__init__(message)


class ResolutionError(PaylinkError):
    """Raised when a wallet address cannot be fetched or is malformed."""


class WalletResolutionError(ResolutionError):
    """Raised when the buyer or merchant wallet of a purchase cannot be resolved."""

    def __init__(self, role: str, wallet_uri: str, reason: str) -> None:
        self.role = role
        self.wallet_uri = wallet_uri
        super().__init__(
            f"Could not resolve {role} wallet address {wallet_uri}: {reason}"
        )


class GrantError(PaylinkError):
    """Base class for authorization server refusals."""


class GrantRequestError(GrantError):
    """Raised when a grant request or continuation is refused or malformed."""


class GrantDeniedError(GrantError):
    """Raised when the wallet owner rejected the interactive consent."""


class GrantNotReadyError(GrantError):
    """Raised when a grant is continued before the user finished the interaction."""


class InvariantViolation(PaylinkError):
    """Raised when a server response fails an amount or state consistency check."""


class SelfPaymentError(PaylinkError):
    """Raised when buyer and merchant resolve to the same wallet."""


class PaymentNotFoundError(PaylinkError):
    """Raised when a payment id has no pending payment record."""

    def __init__(self, payment_id: str) -> None:
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} not found")


class PaymentAlreadyCompletedError(PaylinkError):
    """Raised when an operation needs a payment that has not settled yet."""

    def __init__(self, payment_id: str) -> None:
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} is already completed")


class AuthorizationIncompleteError(PaylinkError):
    """Raised when a grant continuation did not yield an access token."""


class PaymentFailedError(PaylinkError):
    """Raised when the outgoing payment reached the FAILED state."""

    def __init__(
        self,
        payment_id: str,
        outgoing_payment_id: Optional[str] = None,
        reason: str = "Outgoing payment failed",
    ) -> None:
        self.payment_id = payment_id
        self.outgoing_payment_id = outgoing_payment_id
        super().__init__(f"Payment {payment_id}: {reason}")


class PaymentTimeoutError(PaylinkError):
    """Raised when settlement polling ran out of attempts before a terminal state."""

    def __init__(
        self,
        payment_id: str,
        outgoing_payment_id: str,
        attempts: int,
        last_state: Optional[str] = None,
    ) -> None:
        self.payment_id = payment_id
        self.outgoing_payment_id = outgoing_payment_id
        self.attempts = attempts
        self.last_state = last_state
        super().__init__(
            f"Outgoing payment {outgoing_payment_id} did not settle after "
            f"{attempts} checks (last state: {last_state})"
        )
