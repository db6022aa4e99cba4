"""Ticket purchase orchestration over Open Payments.

A purchase has two halves. `initiate_purchase` resolves both wallets, creates
an incoming payment on the merchant's account, quotes it from the buyer's
account and asks the buyer's authorization server for an interactive
outgoing-payment grant. `complete_purchase` continues that grant with the
interaction reference handed back by the buyer's wallet, creates the
outgoing payment and polls it until it settles.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import uuid4

from ....crypto.gnap import generate_interact_nonce, verify_interaction_hash
from ....domain.errors import (
    AuthorizationIncompleteError,
    GrantDeniedError,
    GrantRequestError,
    PaymentAlreadyCompletedError,
    PaymentFailedError,
    PaymentNotFoundError,
    PaymentTimeoutError,
    ResolutionError,
    SelfPaymentError,
    WalletResolutionError,
)
from ....domain.marketplace.entities import (
    AccessAction,
    AccessItem,
    AccessLimits,
    AccessType,
    Amount,
    FinalizedGrant,
    IncomingPayment,
    InteractFinish,
    InteractRequest,
    OutgoingPaymentState,
    PaymentStatus,
    PendingPaymentRecord,
    Quote,
    WalletAddress,
)
from ....domain.marketplace.pending_payment_repository import (
    PendingPaymentRepository,
)
from ....domain.shared import (
    GrantNegotiatorProtocol,
    ResourceClientProtocol,
    WalletResolverProtocol,
)
from ....infrastructure.open_payments.wallet_address_client import (
    normalize_wallet_address_uri,
)
from ..dtos import CompletePurchaseResult, InitiatePurchaseResult
from .payment_validators import (
    parse_amount,
    to_minor_units,
    validate_created_incoming_payment,
    validate_outgoing_payment,
    validate_quote,
)
from .settlement import SettlementPoller

logger = logging.getLogger(__name__)

INCOMING_PAYMENT_ACTIONS = [
    AccessAction.CREATE,
    AccessAction.READ,
    AccessAction.COMPLETE,
]
QUOTE_ACTIONS = [AccessAction.CREATE, AccessAction.READ]
OUTGOING_PAYMENT_ACTIONS = [AccessAction.CREATE, AccessAction.READ]

GRANT_REJECTED = "grant_rejected"


def generate_payment_id() -> str:
    return f"payment_{uuid4().hex}"


class PurchaseService:
    """Drives a purchase from wallet resolution to a settled outgoing payment."""

    def __init__(
        self,
        wallet_resolver: WalletResolverProtocol,
        grant_negotiator: GrantNegotiatorProtocol,
        resource_client: ResourceClientProtocol,
        pending_payment_repository: PendingPaymentRepository,
        settlement_poller: SettlementPoller,
        callback_url_builder: Callable[[str], str],
    ):
        self.wallet_resolver = wallet_resolver
        self.grant_negotiator = grant_negotiator
        self.resource_client = resource_client
        self.pending_payment_repository = pending_payment_repository
        self.settlement_poller = settlement_poller
        self.callback_url_builder = callback_url_builder
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, payment_id: str) -> asyncio.Lock:
        lock = self._locks.get(payment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[payment_id] = lock
        return lock

    async def initiate_purchase(
        self,
        event_id: str,
        merchant_wallet_uri: str,
        buyer_wallet_uri: str,
        amount: Union[Decimal, int, float, str],
        *,
        event_name: Optional[str] = None,
        merchant_id: Optional[str] = None,
    ) -> InitiatePurchaseResult:
        """Set up the payment and return the URL where the buyer approves it."""
        value = parse_amount(amount)
        merchant_uri = self._normalize("merchant", merchant_wallet_uri)
        buyer_uri = self._normalize("buyer", buyer_wallet_uri)
        if merchant_uri == buyer_uri:
            raise SelfPaymentError("Buyer and merchant cannot use the same wallet")

        merchant_wallet, buyer_wallet = await self._resolve_wallets(
            merchant_uri, buyer_uri
        )
        if merchant_wallet.id == buyer_wallet.id:
            raise SelfPaymentError("Buyer and merchant cannot use the same wallet")

        payment_id = generate_payment_id()
        logger.info(
            "Starting purchase %s of event %s for %s %s",
            payment_id,
            event_id,
            value,
            merchant_wallet.asset_code,
        )

        incoming_payment = await self._create_incoming_payment(
            merchant_wallet,
            value,
            metadata={
                "eventId": event_id,
                "eventName": event_name,
                "description": f"Ticket for {event_name or event_id}",
                "merchantId": merchant_id,
                "paymentId": payment_id,
            },
        )
        quote = await self._create_quote(buyer_wallet, merchant_wallet, incoming_payment)

        nonce = generate_interact_nonce()
        grant = await self.grant_negotiator.request_grant(
            buyer_wallet.auth_server,
            [
                AccessItem(
                    type=AccessType.OUTGOING_PAYMENT,
                    actions=OUTGOING_PAYMENT_ACTIONS,
                    identifier=buyer_wallet.id,
                    limits=AccessLimits(
                        debit_amount=quote.debit_amount,
                        receive_amount=quote.receive_amount,
                    ),
                )
            ],
            InteractRequest(
                finish=InteractFinish(
                    uri=self.callback_url_builder(payment_id), nonce=nonce
                )
            ),
        )

        record = PendingPaymentRecord(
            payment_id=payment_id,
            event_id=event_id,
            event_name=event_name,
            merchant_id=merchant_id,
            amount=value,
            buyer_wallet=buyer_wallet,
            merchant_wallet=merchant_wallet,
            incoming_payment_id=incoming_payment.id,
            quote_id=quote.id,
            continuation=grant.continuation,
            interact_nonce=nonce,
            grant_endpoint=buyer_wallet.auth_server,
        )

        if isinstance(grant, FinalizedGrant):
            # The buyer's wallet granted access without interaction.
            await self.pending_payment_repository.put(record)
            completed = await self._settle(record, grant.access_token.value)
            return InitiatePurchaseResult(
                payment_id=payment_id,
                status=completed.status,
                outgoing_payment_id=completed.outgoing_payment_id,
                state=completed.state,
            )

        record.interact_finish = grant.interact.finish
        await self.pending_payment_repository.put(record)
        logger.info("Purchase %s awaiting buyer authorization", payment_id)
        return InitiatePurchaseResult(
            payment_id=payment_id,
            status=PaymentStatus.PENDING_AUTHORIZATION,
            authorization_url=grant.interact.redirect,
        )

    async def complete_purchase(
        self, payment_id: str, interact_ref: str
    ) -> CompletePurchaseResult:
        """Continue the buyer's grant and settle the outgoing payment."""
        await self._get_record(payment_id)

        async with self._lock_for(payment_id):
            record = await self._get_record(payment_id)
            if record.status == PaymentStatus.COMPLETED:
                logger.info("Purchase %s already completed", payment_id)
                return self._completed_result(record)
            if record.status == PaymentStatus.FAILED:
                raise PaymentFailedError(
                    payment_id,
                    record.outgoing_payment_id,
                    record.error or "Outgoing payment failed",
                )
            if record.continuation is None:
                raise AuthorizationIncompleteError(
                    f"Payment {payment_id} has no grant to continue"
                )

            try:
                grant = await self.grant_negotiator.continue_grant(
                    record.continuation.uri,
                    record.continuation.access_token.value,
                    interact_ref,
                )
            except GrantDeniedError as e:
                await self._mark_failed(payment_id, str(e))
                raise
            except GrantRequestError:
                if record.outgoing_payment_id is None:
                    raise
                # The grant was already consumed by an earlier completion attempt.
                logger.info(
                    "Purchase %s was already continued; outgoing payment %s",
                    payment_id,
                    record.outgoing_payment_id,
                )
                return CompletePurchaseResult(
                    payment_id=payment_id,
                    status=record.status,
                    outgoing_payment_id=record.outgoing_payment_id,
                    state=record.state,
                )

            if not isinstance(grant, FinalizedGrant):
                raise AuthorizationIncompleteError(
                    f"Grant for payment {payment_id} was not finalized"
                )
            return await self._settle(record, grant.access_token.value)

    async def handle_authorization_callback(
        self,
        payment_id: str,
        *,
        interact_ref: Optional[str] = None,
        interaction_hash: Optional[str] = None,
        result: Optional[str] = None,
    ) -> CompletePurchaseResult:
        """Handle the redirect from the buyer's wallet after consent."""
        record = await self._get_record(payment_id)

        if result == GRANT_REJECTED or not interact_ref:
            return await self._reject(payment_id)

        if interaction_hash is not None and record.interact_nonce and record.interact_finish:
            if not verify_interaction_hash(
                interaction_hash,
                client_nonce=record.interact_nonce,
                server_finish=record.interact_finish,
                interact_ref=interact_ref,
                grant_endpoint=record.grant_endpoint,
            ):
                logger.warning("Interaction hash mismatch for payment %s", payment_id)
                raise GrantDeniedError(
                    f"Interaction hash for payment {payment_id} does not match"
                )

        return await self.complete_purchase(payment_id, interact_ref)

    async def _reject(self, payment_id: str) -> CompletePurchaseResult:
        async with self._lock_for(payment_id):
            record = await self._get_record(payment_id)
            if record.status == PaymentStatus.COMPLETED:
                logger.warning(
                    "Ignoring rejection of purchase %s: already completed", payment_id
                )
                return self._completed_result(record)
            if record.outgoing_payment_id is not None and record.is_pending:
                # The outgoing payment exists; only its own state can fail it now.
                logger.warning(
                    "Ignoring rejection of purchase %s: outgoing payment %s is %s",
                    payment_id,
                    record.outgoing_payment_id,
                    record.state.value if record.state else None,
                )
                return self._completed_result(record)
            await self._mark_failed(payment_id, "Buyer rejected the payment")
        raise GrantDeniedError(f"Payment {payment_id} was rejected by the buyer")

    async def cancel_purchase(self, payment_id: str) -> PendingPaymentRecord:
        """Abandon a purchase that has not settled, revoking its grant."""
        await self._get_record(payment_id)

        async with self._lock_for(payment_id):
            record = await self._get_record(payment_id)
            if record.status == PaymentStatus.COMPLETED:
                raise PaymentAlreadyCompletedError(payment_id)
            if record.status == PaymentStatus.FAILED:
                return record

            if record.continuation is not None:
                try:
                    await self.grant_negotiator.cancel_grant(
                        record.continuation.uri,
                        record.continuation.access_token.value,
                    )
                except GrantRequestError as e:
                    logger.warning(
                        "Could not revoke grant for payment %s: %s", payment_id, e
                    )

            updated = await self._mark_failed(payment_id, "Cancelled by buyer")
            logger.info("Purchase %s cancelled", payment_id)
            return updated or record

    async def get_payment_status(self, payment_id: str) -> PendingPaymentRecord:
        return await self._get_record(payment_id)

    def _normalize(self, role: str, wallet_uri: str) -> str:
        try:
            return normalize_wallet_address_uri(wallet_uri)
        except ResolutionError as e:
            raise WalletResolutionError(role, wallet_uri, str(e)) from e

    async def _resolve_wallets(
        self, merchant_uri: str, buyer_uri: str
    ) -> tuple[WalletAddress, WalletAddress]:
        results = await asyncio.gather(
            self.wallet_resolver.resolve(merchant_uri),
            self.wallet_resolver.resolve(buyer_uri),
            return_exceptions=True,
        )
        wallets: list[WalletAddress] = []
        for role, uri, result in zip(("merchant", "buyer"), (merchant_uri, buyer_uri), results):
            if isinstance(result, ResolutionError):
                raise WalletResolutionError(role, uri, str(result)) from result
            if isinstance(result, BaseException):
                raise result
            wallets.append(result)
        return wallets[0], wallets[1]

    async def _request_token(
        self, wallet: WalletAddress, access: AccessItem
    ) -> str:
        grant = await self.grant_negotiator.request_grant(wallet.auth_server, [access])
        if not isinstance(grant, FinalizedGrant):
            raise GrantRequestError(
                f"Expected a non-interactive {access.type.value} grant from "
                f"{wallet.auth_server}"
            )
        return grant.access_token.value

    async def _create_incoming_payment(
        self,
        merchant_wallet: WalletAddress,
        value: Decimal,
        metadata: dict[str, Any],
    ) -> IncomingPayment:
        incoming_amount = Amount(
            value=to_minor_units(value, merchant_wallet.asset_scale),
            asset_code=merchant_wallet.asset_code,
            asset_scale=merchant_wallet.asset_scale,
        )
        token = await self._request_token(
            merchant_wallet,
            AccessItem(
                type=AccessType.INCOMING_PAYMENT, actions=INCOMING_PAYMENT_ACTIONS
            ),
        )
        payment = await self.resource_client.create_incoming_payment(
            merchant_wallet.resource_server,
            token,
            wallet_address=merchant_wallet.id,
            incoming_amount=incoming_amount,
            metadata={k: v for k, v in metadata.items() if v is not None},
        )
        return validate_created_incoming_payment(payment, expected_amount=incoming_amount)

    async def _create_quote(
        self,
        buyer_wallet: WalletAddress,
        merchant_wallet: WalletAddress,
        incoming_payment: IncomingPayment,
    ) -> Quote:
        token = await self._request_token(
            buyer_wallet,
            AccessItem(type=AccessType.QUOTE, actions=QUOTE_ACTIONS),
        )
        quote = await self.resource_client.create_quote(
            buyer_wallet.resource_server,
            token,
            wallet_address=buyer_wallet.id,
            receiver=incoming_payment.id,
        )
        return validate_quote(
            quote,
            receiver=incoming_payment.id,
            sender_wallet=buyer_wallet,
            receiver_wallet=merchant_wallet,
        )

    async def _settle(
        self, record: PendingPaymentRecord, access_token: str
    ) -> CompletePurchaseResult:
        payment_id = record.payment_id
        buyer_wallet = record.buyer_wallet
        outgoing = validate_outgoing_payment(
            await self.resource_client.create_outgoing_payment(
                buyer_wallet.resource_server,
                access_token,
                wallet_address=buyer_wallet.id,
                quote_id=record.quote_id,
                metadata={
                    k: v
                    for k, v in {
                        "eventId": record.event_id,
                        "eventName": record.event_name,
                        "paymentId": payment_id,
                    }.items()
                    if v is not None
                },
            )
        )
        await self.pending_payment_repository.update(
            payment_id, lambda r: r.record_progress(outgoing.id, outgoing.state)
        )

        async def fetch():
            payment = await self.resource_client.get_outgoing_payment(
                buyer_wallet.resource_server, access_token, outgoing.id
            )
            return validate_outgoing_payment(payment)

        outcome = await self.settlement_poller.wait_for_terminal_state(outgoing, fetch)
        final = outcome.payment

        if outcome.timed_out:
            await self.pending_payment_repository.update(
                payment_id, lambda r: r.record_progress(final.id, final.state)
            )
            raise PaymentTimeoutError(
                payment_id,
                final.id,
                outcome.attempts,
                final.state.value if final.state else None,
            )

        if final.state == OutgoingPaymentState.FAILED:
            await self._mark_failed(
                payment_id,
                "Outgoing payment failed",
                outgoing_payment_id=final.id,
                state=OutgoingPaymentState.FAILED,
            )
            raise PaymentFailedError(payment_id, final.id)

        await self.pending_payment_repository.update(
            payment_id, lambda r: r.mark_completed(final.id, final.state)
        )
        logger.info(
            "Purchase %s completed with outgoing payment %s after %d checks",
            payment_id,
            final.id,
            outcome.attempts,
        )
        return CompletePurchaseResult(
            payment_id=payment_id,
            status=PaymentStatus.COMPLETED,
            outgoing_payment_id=final.id,
            state=final.state,
        )

    async def _get_record(self, payment_id: str) -> PendingPaymentRecord:
        record = await self.pending_payment_repository.get(payment_id)
        if record is None:
            raise PaymentNotFoundError(payment_id)
        return record

    async def _mark_failed(
        self,
        payment_id: str,
        error: str,
        *,
        outgoing_payment_id: Optional[str] = None,
        state: Optional[OutgoingPaymentState] = None,
    ) -> Optional[PendingPaymentRecord]:
        def mutate(record: PendingPaymentRecord) -> None:
            if record.is_pending:
                record.mark_failed(
                    error, outgoing_payment_id=outgoing_payment_id, state=state
                )

        logger.info("Purchase %s failed: %s", payment_id, error)
        return await self.pending_payment_repository.update(payment_id, mutate)

    @staticmethod
    def _completed_result(record: PendingPaymentRecord) -> CompletePurchaseResult:
        return CompletePurchaseResult(
            payment_id=record.payment_id,
            status=record.status,
            outgoing_payment_id=record.outgoing_payment_id,
            state=record.state,
        )
