"""Marketplace purchase API routes."""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from prometheus_client import Counter, Gauge, Histogram

from ....application.marketplace.dtos import (
    CancelPaymentDTO,
    CancelPaymentResponseDTO,
    CompletePaymentDTO,
    CompletePaymentResponseDTO,
    CompletePurchaseResult,
    CreatePaymentDTO,
    CreatePaymentResponseDTO,
    PaymentStatusDTO,
    PaymentStatusResponseDTO,
)
from ....application.marketplace.use_cases.purchase import PurchaseService
from ....domain.errors import (
    AuthorizationIncompleteError,
    GrantDeniedError,
    GrantNotReadyError,
    InvariantViolation,
    OpenPaymentsRequestError,
    PaylinkError,
    PaymentAlreadyCompletedError,
    PaymentFailedError,
    PaymentNotFoundError,
    PaymentTimeoutError,
    ResolutionError,
    SelfPaymentError,
)
from ....domain.marketplace.entities import PaymentStatus
from ....envs.marketplace_env import Settings
from ..dependencies import get_purchase_service, get_settings_from_app

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/marketplace", tags=["marketplace"])

REQUEST_DURATION_BUCKETS = (
    [0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0] + [float("inf")]
)

marketplace_requests_total = Counter(
    "marketplace_requests_total",
    "Total marketplace purchase requests processed",
    ["endpoint", "status"],
)
marketplace_request_duration_seconds = Histogram(
    "marketplace_request_duration_seconds",
    "Wall time to process a marketplace purchase request",
    ["endpoint", "status"],
    buckets=REQUEST_DURATION_BUCKETS,
)
marketplace_settlements_inprogress = Gauge(
    "marketplace_settlements_inprogress",
    "Number of purchases currently waiting for an outgoing payment to settle",
)

# Ordered: subclasses before their bases.
_ERROR_STATUS: list[tuple[type[PaylinkError], int]] = [
    (PaymentNotFoundError, status.HTTP_404_NOT_FOUND),
    (SelfPaymentError, status.HTTP_400_BAD_REQUEST),
    (ResolutionError, status.HTTP_400_BAD_REQUEST),
    (AuthorizationIncompleteError, status.HTTP_400_BAD_REQUEST),
    (GrantDeniedError, status.HTTP_403_FORBIDDEN),
    (GrantNotReadyError, status.HTTP_409_CONFLICT),
    (PaymentAlreadyCompletedError, status.HTTP_409_CONFLICT),
    (PaymentFailedError, status.HTTP_409_CONFLICT),
    (PaymentTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (InvariantViolation, status.HTTP_502_BAD_GATEWAY),
    (OpenPaymentsRequestError, status.HTTP_502_BAD_GATEWAY),
]


def status_for_error(error: PaylinkError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    # Remaining GrantError subclasses are upstream refusals.
    return status.HTTP_502_BAD_GATEWAY


def _observe(endpoint: str, outcome: str, start_time: float) -> None:
    marketplace_requests_total.labels(endpoint=endpoint, status=outcome).inc()
    marketplace_request_duration_seconds.labels(
        endpoint=endpoint, status=outcome
    ).observe(time.perf_counter() - start_time)


def _http_error(endpoint: str, error: Exception, start_time: float) -> HTTPException:
    """Translate a service error into an HTTPException, recording metrics."""
    if isinstance(error, ValueError):
        _observe(endpoint, "client_error", start_time)
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, PaylinkError):
        status_code = status_for_error(error)
        _observe(
            endpoint, "client_error" if status_code < 500 else "upstream_error", start_time
        )
        if status_code >= 500:
            logger.warning("%s failed upstream: %s", endpoint, error)
        return HTTPException(status_code=status_code, detail=str(error))
    logger.exception("Internal server error while processing %s: %s", endpoint, error)
    _observe(endpoint, "server_error", start_time)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Internal server error while processing {endpoint}",
    )


def _complete_response(result: CompletePurchaseResult) -> CompletePaymentResponseDTO:
    if result.status == PaymentStatus.COMPLETED:
        message = "Payment completed"
    else:
        message = "Payment is still settling"
    return CompletePaymentResponseDTO(
        payment_id=result.payment_id,
        status=result.status,
        outgoing_payment_id=result.outgoing_payment_id,
        state=result.state,
        message=message,
    )


@router.post(
    "/create-payment",
    response_model=CreatePaymentResponseDTO,
)
async def create_payment(
    payload: CreatePaymentDTO,
    purchase_service: PurchaseService = Depends(get_purchase_service),
    settings: Settings = Depends(get_settings_from_app),
) -> CreatePaymentResponseDTO:
    """Start a ticket purchase and return the buyer's authorization URL."""
    start_time = time.perf_counter()
    try:
        result = await purchase_service.initiate_purchase(
            payload.event_id,
            settings.merchant_wallet_address,
            payload.client_wallet_address,
            payload.amount,
            event_name=payload.event_name,
            merchant_id=payload.merchant_id,
        )
    except Exception as e:
        raise _http_error("create-payment", e, start_time) from e
    _observe("create-payment", "success", start_time)

    requires_auth = result.authorization_url is not None
    return CreatePaymentResponseDTO(
        payment_id=result.payment_id,
        requires_auth=requires_auth,
        auth_url=result.authorization_url,
        status=result.status,
        outgoing_payment_id=result.outgoing_payment_id,
        state=result.state,
        message=(
            "Redirect the buyer to authUrl to approve the payment"
            if requires_auth
            else "Payment completed without interaction"
        ),
    )


@router.get(
    "/callback/{payment_id}",
    response_model=CompletePaymentResponseDTO,
)
async def authorization_callback(
    payment_id: str = Path(..., description="Marketplace payment identifier"),
    interact_ref: Optional[str] = Query(None),
    hash: Optional[str] = Query(None),
    result: Optional[str] = Query(None),
    purchase_service: PurchaseService = Depends(get_purchase_service),
) -> CompletePaymentResponseDTO:
    """Landing point of the buyer's wallet redirect after the consent screen."""
    start_time = time.perf_counter()
    marketplace_settlements_inprogress.inc()
    try:
        outcome = await purchase_service.handle_authorization_callback(
            payment_id,
            interact_ref=interact_ref,
            interaction_hash=hash,
            result=result,
        )
    except Exception as e:
        raise _http_error("callback", e, start_time) from e
    finally:
        marketplace_settlements_inprogress.dec()
    _observe("callback", "success", start_time)
    return _complete_response(outcome)


@router.post(
    "/complete-payment",
    response_model=CompletePaymentResponseDTO,
)
async def complete_payment(
    payload: CompletePaymentDTO,
    purchase_service: PurchaseService = Depends(get_purchase_service),
) -> CompletePaymentResponseDTO:
    """Finish a purchase with the interaction reference from the buyer's wallet."""
    start_time = time.perf_counter()
    marketplace_settlements_inprogress.inc()
    try:
        outcome = await purchase_service.complete_purchase(
            payload.payment_id, payload.interact_ref
        )
    except Exception as e:
        raise _http_error("complete-payment", e, start_time) from e
    finally:
        marketplace_settlements_inprogress.dec()
    _observe("complete-payment", "success", start_time)
    return _complete_response(outcome)


@router.post(
    "/cancel-payment",
    response_model=CancelPaymentResponseDTO,
)
async def cancel_payment(
    payload: CancelPaymentDTO,
    purchase_service: PurchaseService = Depends(get_purchase_service),
) -> CancelPaymentResponseDTO:
    start_time = time.perf_counter()
    try:
        record = await purchase_service.cancel_purchase(payload.payment_id)
    except Exception as e:
        raise _http_error("cancel-payment", e, start_time) from e
    _observe("cancel-payment", "success", start_time)
    return CancelPaymentResponseDTO(
        payment_id=record.payment_id,
        status=record.status,
        message="Payment cancelled",
    )


@router.get(
    "/payment-status/{payment_id}",
    response_model=PaymentStatusResponseDTO,
)
async def get_payment_status(
    payment_id: str = Path(..., description="Marketplace payment identifier"),
    purchase_service: PurchaseService = Depends(get_purchase_service),
) -> PaymentStatusResponseDTO:
    start_time = time.perf_counter()
    try:
        record = await purchase_service.get_payment_status(payment_id)
    except Exception as e:
        raise _http_error("payment-status", e, start_time) from e
    _observe("payment-status", "success", start_time)
    return PaymentStatusResponseDTO(payment=PaymentStatusDTO.from_record(record))
