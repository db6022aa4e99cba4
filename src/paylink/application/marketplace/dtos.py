"""Data Transfer Objects for the marketplace application layer."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ...domain.marketplace.entities import (
    OutgoingPaymentState,
    PaymentStatus,
    PendingPaymentRecord,
)
from ...domain.shared.serializers import CommonSerializersMixin


class InitiatePurchaseResult(BaseModel):
    """Outcome of starting a purchase."""

    payment_id: str
    status: PaymentStatus
    authorization_url: Optional[str] = None
    outgoing_payment_id: Optional[str] = None
    state: Optional[OutgoingPaymentState] = None


class CompletePurchaseResult(BaseModel):
    """Outcome of settling a purchase."""

    payment_id: str
    status: PaymentStatus
    outgoing_payment_id: Optional[str] = None
    state: Optional[OutgoingPaymentState] = None


class CreatePaymentDTO(BaseModel):
    """DTO for starting a ticket purchase."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "eventId": "evt_123",
                "eventName": "Concierto de Jazz",
                "amount": "10.00",
                "clientWalletAddress": "https://ilp.interledger-test.dev/buyer",
            }
        },
    )

    event_id: str = Field(..., alias="eventId", min_length=1)
    event_name: str = Field(..., alias="eventName", min_length=1)
    amount: Decimal = Field(..., gt=0)
    client_wallet_address: str = Field(..., alias="clientWalletAddress", min_length=1)
    merchant_id: Optional[str] = Field(None, alias="merchantId")


class CreatePaymentResponseDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    payment_id: str = Field(..., alias="paymentId")
    requires_auth: bool = Field(..., alias="requiresAuth")
    auth_url: Optional[str] = Field(None, alias="authUrl")
    status: PaymentStatus
    outgoing_payment_id: Optional[str] = Field(None, alias="outgoingPaymentId")
    state: Optional[OutgoingPaymentState] = None
    message: str


class CompletePaymentDTO(BaseModel):
    """DTO for finishing a purchase after the buyer approved it."""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId", min_length=1)
    interact_ref: str = Field(..., min_length=1)


class CompletePaymentResponseDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    payment_id: str = Field(..., alias="paymentId")
    status: PaymentStatus
    outgoing_payment_id: Optional[str] = Field(None, alias="outgoingPaymentId")
    state: Optional[OutgoingPaymentState] = None
    message: str


class CancelPaymentDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId", min_length=1)


class CancelPaymentResponseDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    payment_id: str = Field(..., alias="paymentId")
    status: PaymentStatus
    message: str


class PaymentStatusDTO(CommonSerializersMixin, BaseModel):
    """DTO for returning the state of a purchase."""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., alias="paymentId")
    event_id: str = Field(..., alias="eventId")
    event_name: Optional[str] = Field(None, alias="eventName")
    amount: Decimal
    status: PaymentStatus
    state: Optional[OutgoingPaymentState] = None
    incoming_payment_id: str = Field(..., alias="incomingPaymentId")
    quote_id: str = Field(..., alias="quoteId")
    outgoing_payment_id: Optional[str] = Field(None, alias="outgoingPaymentId")
    error: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    failed_at: Optional[datetime] = Field(None, alias="failedAt")

    @classmethod
    def from_record(cls, record: PendingPaymentRecord) -> PaymentStatusDTO:
        return cls(
            payment_id=record.payment_id,
            event_id=record.event_id,
            event_name=record.event_name,
            amount=record.amount,
            status=record.status,
            state=record.state,
            incoming_payment_id=record.incoming_payment_id,
            quote_id=record.quote_id,
            outgoing_payment_id=record.outgoing_payment_id,
            error=record.error,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
            failed_at=record.failed_at,
        )


class PaymentStatusResponseDTO(BaseModel):
    success: bool = True
    payment: PaymentStatusDTO
