"""Marketplace domain entities: Open Payments resources, grants, and pending purchases."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..shared.serializers import CommonSerializersMixin


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OpenPaymentsModel(BaseModel):
    """Base for resource server payloads, which use camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Amount(OpenPaymentsModel):
    """A quantity in minor units of an asset."""

    value: str = Field(..., pattern=r"^\d+$")
    asset_code: str = Field(..., min_length=1)
    asset_scale: int = Field(..., ge=0, le=255)

    def as_int(self) -> int:
        return int(self.value)

    def is_compatible(self, other: Amount) -> bool:
        """True when both amounts are denominated in the same asset."""
        return (
            self.asset_code == other.asset_code
            and self.asset_scale == other.asset_scale
        )


class WalletAddress(OpenPaymentsModel):
    """Public description of an Open Payments account."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    auth_server: str = Field(..., min_length=1)
    resource_server: str = Field(..., min_length=1)
    asset_code: str = Field(..., min_length=1)
    asset_scale: int = Field(..., ge=0, le=255)
    public_name: Optional[str] = None


class IncomingPayment(OpenPaymentsModel):
    """A receivable on the merchant's account."""

    id: str
    wallet_address: str
    incoming_amount: Optional[Amount] = None
    received_amount: Amount
    completed: bool = False
    metadata: Optional[dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Quote(OpenPaymentsModel):
    """Priced commitment to deliver an amount to a receiver."""

    id: str
    wallet_address: str
    receiver: str
    debit_amount: Amount
    receive_amount: Amount
    method: str = "ilp"
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def fee(self) -> Optional[int]:
        """Fee in minor units, or None when the assets differ."""
        if not self.debit_amount.is_compatible(self.receive_amount):
            return None
        return self.debit_amount.as_int() - self.receive_amount.as_int()


class OutgoingPaymentState(str, Enum):
    FUNDING = "FUNDING"
    SENDING = "SENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (OutgoingPaymentState.COMPLETED, OutgoingPaymentState.FAILED)


class OutgoingPayment(OpenPaymentsModel):
    """A payment executed from the buyer's account."""

    id: str
    wallet_address: str
    quote_id: Optional[str] = None
    debit_amount: Amount
    sent_amount: Amount
    receive_amount: Optional[Amount] = None
    receiver: Optional[str] = None
    failed: bool = False
    state: Optional[OutgoingPaymentState] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def derive_state(self) -> OutgoingPayment:
        # Newer resource servers drop `state`; derive it from the amounts.
        if self.state is None:
            if self.failed:
                self.state = OutgoingPaymentState.FAILED
            elif self.sent_amount.as_int() >= self.debit_amount.as_int():
                self.state = OutgoingPaymentState.COMPLETED
            else:
                self.state = OutgoingPaymentState.SENDING
        return self


class AccessType(str, Enum):
    INCOMING_PAYMENT = "incoming-payment"
    OUTGOING_PAYMENT = "outgoing-payment"
    QUOTE = "quote"


class AccessAction(str, Enum):
    CREATE = "create"
    READ = "read"
    READ_ALL = "read-all"
    COMPLETE = "complete"
    LIST = "list"
    LIST_ALL = "list-all"


class AccessLimits(OpenPaymentsModel):
    debit_amount: Optional[Amount] = None
    receive_amount: Optional[Amount] = None
    interval: Optional[str] = None


class AccessItem(OpenPaymentsModel):
    """One entry of a grant's access list."""

    type: AccessType
    actions: list[AccessAction] = Field(..., min_length=1)
    identifier: Optional[str] = None
    limits: Optional[AccessLimits] = None


# GNAP payloads below use snake_case on the wire.


class InteractFinish(BaseModel):
    method: Literal["redirect"] = "redirect"
    uri: str
    nonce: str


class InteractRequest(BaseModel):
    start: list[Literal["redirect"]] = Field(default_factory=lambda: ["redirect"])
    finish: Optional[InteractFinish] = None


class ContinuationToken(BaseModel):
    value: str


class GrantContinuation(BaseModel):
    """Handle used to continue or cancel a grant."""

    uri: str
    access_token: ContinuationToken
    wait: Optional[int] = None


class GrantInteraction(BaseModel):
    redirect: str
    finish: Optional[str] = None


class GrantAccessToken(BaseModel):
    value: str
    manage: Optional[str] = None
    expires_in: Optional[int] = None
    access: list[AccessItem] = Field(default_factory=list)


class PendingGrant(BaseModel):
    """Grant that still needs the wallet owner's consent."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["pending"] = "pending"
    interact: GrantInteraction
    continuation: GrantContinuation = Field(..., alias="continue")


class FinalizedGrant(BaseModel):
    """Grant that carries a usable access token."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["finalized"] = "finalized"
    access_token: GrantAccessToken
    continuation: Optional[GrantContinuation] = Field(None, alias="continue")


Grant = Annotated[Union[PendingGrant, FinalizedGrant], Field(discriminator="kind")]


class PaymentStatus(str, Enum):
    PENDING_AUTHORIZATION = "pending_authorization"
    COMPLETED = "completed"
    FAILED = "failed"


class PendingPaymentRecord(CommonSerializersMixin, BaseModel):
    """State carried between purchase initiation and completion."""

    payment_id: str
    event_id: str
    event_name: Optional[str] = None
    merchant_id: Optional[str] = None
    amount: Decimal
    buyer_wallet: WalletAddress
    merchant_wallet: WalletAddress
    incoming_payment_id: str
    quote_id: str
    continuation: Optional[GrantContinuation] = None
    interact_nonce: Optional[str] = None
    interact_finish: Optional[str] = None
    grant_endpoint: str
    status: PaymentStatus = PaymentStatus.PENDING_AUTHORIZATION
    outgoing_payment_id: Optional[str] = None
    state: Optional[OutgoingPaymentState] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING_AUTHORIZATION

    def record_progress(
        self, outgoing_payment_id: str, state: Optional[OutgoingPaymentState]
    ) -> None:
        """Remember the outgoing payment while it is still settling."""
        if not self.is_pending:
            raise ValueError(f"Payment {self.payment_id} is already {self.status.value}")
        self.outgoing_payment_id = outgoing_payment_id
        self.state = state
        self.updated_at = _utcnow()

    def mark_completed(
        self,
        outgoing_payment_id: str,
        state: OutgoingPaymentState = OutgoingPaymentState.COMPLETED,
    ) -> None:
        if self.status == PaymentStatus.FAILED:
            raise ValueError(f"Payment {self.payment_id} has already failed")
        now = _utcnow()
        self.status = PaymentStatus.COMPLETED
        self.outgoing_payment_id = outgoing_payment_id
        self.state = state
        self.completed_at = now
        self.updated_at = now

    def mark_failed(
        self,
        error: str,
        *,
        outgoing_payment_id: Optional[str] = None,
        state: Optional[OutgoingPaymentState] = None,
    ) -> None:
        if self.status == PaymentStatus.COMPLETED:
            raise ValueError(f"Payment {self.payment_id} is already completed")
        now = _utcnow()
        self.status = PaymentStatus.FAILED
        self.error = error
        if outgoing_payment_id is not None:
            self.outgoing_payment_id = outgoing_payment_id
        if state is not None:
            self.state = state
        self.failed_at = now
        self.updated_at = now
