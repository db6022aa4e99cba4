"""Use case tests for PurchaseService against in-memory Open Payments fakes."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from paylink.crypto.gnap import compute_interaction_hash
from paylink.domain.errors import (
    AuthorizationIncompleteError,
    GrantDeniedError,
    GrantRequestError,
    InvariantViolation,
    PaymentAlreadyCompletedError,
    PaymentFailedError,
    PaymentNotFoundError,
    PaymentTimeoutError,
    SelfPaymentError,
    WalletResolutionError,
)
from paylink.domain.marketplace.entities import (
    AccessType,
    OutgoingPaymentState,
    PaymentStatus,
)
from tests.fixtures import make_finalized_grant, make_pending_grant

FUNDING = OutgoingPaymentState.FUNDING
SENDING = OutgoingPaymentState.SENDING
COMPLETED = OutgoingPaymentState.COMPLETED
FAILED = OutgoingPaymentState.FAILED


async def start(purchase_service, merchant_wallet, buyer_wallet, amount="10.00"):
    return await purchase_service.initiate_purchase(
        "evt_1",
        merchant_wallet.id,
        buyer_wallet.id,
        Decimal(amount),
        event_name="Jazz Night",
        merchant_id="m-1",
    )


class TestInitiatePurchase:
    @pytest.mark.asyncio
    async def test_returns_authorization_url_and_stores_record(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        grant_negotiator,
        resource_client,
        pending_payment_repository,
    ) -> None:
        result = await start(purchase_service, merchant_wallet, buyer_wallet)

        assert result.status == PaymentStatus.PENDING_AUTHORIZATION
        assert result.authorization_url == "https://auth.buyer.example/interact/abc"
        assert result.payment_id.startswith("payment_")

        record = await pending_payment_repository.get(result.payment_id)
        assert record is not None
        assert record.continuation.access_token.value == "continue-token"
        assert record.interact_finish == "server-finish"
        assert record.quote_id.endswith("/quotes/q-1")

        # Grants: incoming payment on the merchant, quote and outgoing on the buyer.
        kinds = [(url, access[0].type) for url, access, _ in grant_negotiator.requests]
        assert kinds == [
            (merchant_wallet.auth_server, AccessType.INCOMING_PAYMENT),
            (buyer_wallet.auth_server, AccessType.QUOTE),
            (buyer_wallet.auth_server, AccessType.OUTGOING_PAYMENT),
        ]
        _, outgoing_access, interact = grant_negotiator.requests[-1]
        assert outgoing_access[0].identifier == buyer_wallet.id
        assert outgoing_access[0].limits.debit_amount.value == "1000"
        assert interact.finish.uri.endswith(f"/callback/{result.payment_id}")
        assert interact.finish.nonce == record.interact_nonce

    @pytest.mark.asyncio
    async def test_amount_is_converted_with_merchant_scale(
        self, purchase_service, merchant_wallet, buyer_wallet, resource_client
    ) -> None:
        await start(purchase_service, merchant_wallet, buyer_wallet, amount="10.00")

        _, incoming_call = resource_client.calls[0]
        assert incoming_call["incoming_amount"].value == "1000"
        assert incoming_call["incoming_amount"].asset_code == "USD"
        assert incoming_call["metadata"]["eventId"] == "evt_1"
        assert incoming_call["metadata"]["merchantId"] == "m-1"

    @pytest.mark.asyncio
    async def test_self_payment_rejected_before_any_network_call(
        self, purchase_service, buyer_wallet, wallet_resolver, grant_negotiator
    ) -> None:
        with pytest.raises(SelfPaymentError):
            await purchase_service.initiate_purchase(
                "evt_1", buyer_wallet.id, buyer_wallet.id + "/", Decimal("5")
            )
        assert wallet_resolver.calls == []
        assert grant_negotiator.requests == []

    @pytest.mark.asyncio
    async def test_unresolvable_buyer_wallet(
        self, purchase_service, merchant_wallet, grant_negotiator
    ) -> None:
        with pytest.raises(WalletResolutionError) as exc_info:
            await purchase_service.initiate_purchase(
                "evt_1", merchant_wallet.id, "https://wallet.example/ghost", Decimal("5")
            )
        assert exc_info.value.role == "buyer"
        assert grant_negotiator.requests == []

    @pytest.mark.asyncio
    async def test_invalid_amount_raises_value_error(
        self, purchase_service, merchant_wallet, buyer_wallet, wallet_resolver
    ) -> None:
        with pytest.raises(ValueError):
            await start(purchase_service, merchant_wallet, buyer_wallet, amount="0")
        assert wallet_resolver.calls == []

    @pytest.mark.asyncio
    async def test_quote_for_wrong_receiver_is_rejected(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        resource_client,
        pending_payment_repository,
    ) -> None:
        resource_client.quote_receiver = "https://elsewhere.example/incoming-payments/x"
        with pytest.raises(InvariantViolation):
            await start(purchase_service, merchant_wallet, buyer_wallet)
        assert await pending_payment_repository.count() == 0

    @pytest.mark.asyncio
    async def test_incoming_payment_with_received_funds_is_rejected(
        self, purchase_service, merchant_wallet, buyer_wallet, resource_client
    ) -> None:
        resource_client.incoming_received = "5"
        with pytest.raises(InvariantViolation, match="non-zero"):
            await start(purchase_service, merchant_wallet, buyer_wallet)

    @pytest.mark.asyncio
    async def test_non_interactive_grant_settles_immediately(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        grant_negotiator,
        resource_client,
    ) -> None:
        grant_negotiator.interactive_grant = make_finalized_grant("direct-token")
        resource_client.polled_states = [COMPLETED]

        result = await start(purchase_service, merchant_wallet, buyer_wallet)

        assert result.status == PaymentStatus.COMPLETED
        assert result.authorization_url is None
        assert result.state == COMPLETED
        _, outgoing_call = resource_client.calls[2]
        assert outgoing_call["access_token"] == "direct-token"


class TestCompletePurchase:
    @pytest.mark.asyncio
    async def test_completes_after_polling(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        grant_negotiator,
        resource_client,
        pending_payment_repository,
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        resource_client.polled_states = [FUNDING, SENDING, COMPLETED]

        result = await purchase_service.complete_purchase(started.payment_id, "ref-1")

        assert result.status == PaymentStatus.COMPLETED
        assert result.state == COMPLETED
        assert grant_negotiator.continuations == [
            ("https://auth.buyer.example/continue/abc", "continue-token", "ref-1")
        ]
        assert resource_client.count("get_outgoing_payment") == 3

        _, outgoing_call = resource_client.calls[2]
        assert outgoing_call["access_token"] == "outgoing-token"
        assert outgoing_call["quote_id"].endswith("/quotes/q-1")
        assert outgoing_call["metadata"] == {
            "eventId": "evt_1",
            "eventName": "Jazz Night",
            "paymentId": started.payment_id,
        }

        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.COMPLETED
        assert record.completed_at is not None

    @pytest.mark.asyncio
    async def test_unknown_payment_never_continues_a_grant(
        self, purchase_service, grant_negotiator
    ) -> None:
        with pytest.raises(PaymentNotFoundError):
            await purchase_service.complete_purchase("payment_missing", "ref")
        assert grant_negotiator.continuations == []

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises_timeout_and_keeps_record_pending(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        resource_client,
        pending_payment_repository,
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        resource_client.polled_states = [FUNDING] * 10

        with pytest.raises(PaymentTimeoutError) as exc_info:
            await purchase_service.complete_purchase(started.payment_id, "ref-1")

        assert exc_info.value.attempts == 10
        assert resource_client.count("get_outgoing_payment") == 10
        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.PENDING_AUTHORIZATION
        assert record.outgoing_payment_id == exc_info.value.outgoing_payment_id
        assert record.state == FUNDING

    @pytest.mark.asyncio
    async def test_failed_on_first_check_stops_polling(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        resource_client,
        pending_payment_repository,
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        resource_client.polled_states = [FAILED, COMPLETED]

        with pytest.raises(PaymentFailedError):
            await purchase_service.complete_purchase(started.payment_id, "ref-1")

        assert resource_client.count("get_outgoing_payment") == 1
        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.FAILED
        assert record.state == FAILED

        with pytest.raises(PaymentFailedError):
            await purchase_service.complete_purchase(started.payment_id, "ref-1")

    @pytest.mark.asyncio
    async def test_second_completion_returns_stored_result(
        self, purchase_service, merchant_wallet, buyer_wallet, grant_negotiator, resource_client
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        resource_client.polled_states = [COMPLETED]
        first = await purchase_service.complete_purchase(started.payment_id, "ref-1")

        second = await purchase_service.complete_purchase(started.payment_id, "ref-1")

        assert second == first
        assert len(grant_negotiator.continuations) == 1

    @pytest.mark.asyncio
    async def test_denied_grant_marks_record_failed(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        grant_negotiator,
        pending_payment_repository,
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        grant_negotiator.continue_error = GrantDeniedError("user_denied")

        with pytest.raises(GrantDeniedError):
            await purchase_service.complete_purchase(started.payment_id, "ref-1")

        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_pending_continuation_is_incomplete(
        self, purchase_service, merchant_wallet, buyer_wallet, grant_negotiator, resource_client
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        grant_negotiator.continue_result = make_pending_grant()

        with pytest.raises(AuthorizationIncompleteError):
            await purchase_service.complete_purchase(started.payment_id, "ref-1")
        assert resource_client.count("create_outgoing_payment") == 0

    @pytest.mark.asyncio
    async def test_retry_after_timeout_is_benign_duplicate(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        grant_negotiator,
        resource_client,
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        resource_client.polled_states = [SENDING] * 10
        with pytest.raises(PaymentTimeoutError):
            await purchase_service.complete_purchase(started.payment_id, "ref-1")

        grant_negotiator.continue_error = GrantRequestError("grant already finalized")
        result = await purchase_service.complete_purchase(started.payment_id, "ref-1")

        assert result.status == PaymentStatus.PENDING_AUTHORIZATION
        assert result.state == SENDING
        assert resource_client.count("create_outgoing_payment") == 1


class TestAuthorizationCallback:
    @pytest.mark.asyncio
    async def test_valid_hash_completes_purchase(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        resource_client,
        pending_payment_repository,
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        record = await pending_payment_repository.get(started.payment_id)
        resource_client.polled_states = [COMPLETED]
        interaction_hash = compute_interaction_hash(
            record.interact_nonce, "server-finish", "ref-1", buyer_wallet.auth_server
        )

        result = await purchase_service.handle_authorization_callback(
            started.payment_id, interact_ref="ref-1", interaction_hash=interaction_hash
        )

        assert result.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_bad_hash_is_rejected_without_continuation(
        self, purchase_service, merchant_wallet, buyer_wallet, grant_negotiator
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)

        with pytest.raises(GrantDeniedError, match="hash"):
            await purchase_service.handle_authorization_callback(
                started.payment_id, interact_ref="ref-1", interaction_hash="forged"
            )
        assert grant_negotiator.continuations == []

    @pytest.mark.asyncio
    async def test_rejected_consent_marks_failed(
        self, purchase_service, merchant_wallet, buyer_wallet, pending_payment_repository
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)

        with pytest.raises(GrantDeniedError):
            await purchase_service.handle_authorization_callback(
                started.payment_id, result="grant_rejected"
            )

        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_rejection_during_settlement_does_not_fail_the_purchase(
        self,
        make_purchase_service,
        merchant_wallet,
        buyer_wallet,
        resource_client,
        pending_payment_repository,
    ) -> None:
        polling = asyncio.Event()
        release = asyncio.Event()

        async def held_sleep(_: float) -> None:
            polling.set()
            await release.wait()

        service = make_purchase_service(sleep=held_sleep)
        started = await start(service, merchant_wallet, buyer_wallet)
        resource_client.polled_states = [COMPLETED]

        completion = asyncio.create_task(
            service.complete_purchase(started.payment_id, "ref-1")
        )
        await polling.wait()
        rejection = asyncio.create_task(
            service.handle_authorization_callback(
                started.payment_id, result="grant_rejected"
            )
        )
        await asyncio.sleep(0)
        release.set()

        completed = await completion
        rejected = await rejection

        assert completed.status == PaymentStatus.COMPLETED
        assert rejected.status == PaymentStatus.COMPLETED
        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.COMPLETED
        assert record.error is None

    @pytest.mark.asyncio
    async def test_rejection_after_timeout_keeps_outgoing_payment(
        self,
        purchase_service,
        merchant_wallet,
        buyer_wallet,
        pending_payment_repository,
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        with pytest.raises(PaymentTimeoutError):
            await purchase_service.complete_purchase(started.payment_id, "ref-1")

        result = await purchase_service.handle_authorization_callback(
            started.payment_id, result="grant_rejected"
        )

        assert result.status == PaymentStatus.PENDING_AUTHORIZATION
        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.PENDING_AUTHORIZATION
        assert record.outgoing_payment_id == result.outgoing_payment_id
        assert record.outgoing_payment_id is not None


class TestConcurrentPurchases:
    @pytest.mark.asyncio
    async def test_purchases_with_different_ids_settle_independently(
        self,
        make_purchase_service,
        merchant_wallet,
        buyer_wallet,
        resource_client,
        pending_payment_repository,
    ) -> None:
        polling = 0
        both_polling = asyncio.Event()

        async def wait_for_both(_: float) -> None:
            nonlocal polling
            polling += 1
            if polling == 2:
                both_polling.set()
            await both_polling.wait()

        service = make_purchase_service(sleep=wait_for_both)
        first, second = await asyncio.gather(
            service.initiate_purchase(
                "evt_1", merchant_wallet.id, buyer_wallet.id, Decimal("10.00")
            ),
            service.initiate_purchase(
                "evt_2", merchant_wallet.id, buyer_wallet.id, Decimal("10.00")
            ),
        )
        assert first.payment_id != second.payment_id
        resource_client.polled_states = [COMPLETED, COMPLETED]

        # Each settlement waits until the other is polling too.
        results = await asyncio.wait_for(
            asyncio.gather(
                service.complete_purchase(first.payment_id, "ref-1"),
                service.complete_purchase(second.payment_id, "ref-2"),
            ),
            timeout=5,
        )

        assert [r.payment_id for r in results] == [first.payment_id, second.payment_id]
        assert all(r.status == PaymentStatus.COMPLETED for r in results)
        for started, event_id in ((first, "evt_1"), (second, "evt_2")):
            record = await pending_payment_repository.get(started.payment_id)
            assert record.event_id == event_id
            assert record.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancelled_completion_leaves_record_pending(
        self,
        make_purchase_service,
        merchant_wallet,
        buyer_wallet,
        resource_client,
        pending_payment_repository,
    ) -> None:
        polling = asyncio.Event()

        async def sleep_forever(_: float) -> None:
            polling.set()
            await asyncio.Event().wait()

        service = make_purchase_service(sleep=sleep_forever)
        started = await start(service, merchant_wallet, buyer_wallet)

        completion = asyncio.create_task(
            service.complete_purchase(started.payment_id, "ref-1")
        )
        await polling.wait()
        completion.cancel()
        with pytest.raises(asyncio.CancelledError):
            await completion

        record = await pending_payment_repository.get(started.payment_id)
        assert record.status == PaymentStatus.PENDING_AUTHORIZATION
        assert record.outgoing_payment_id is not None
        assert record.state == FUNDING
        assert resource_client.count("get_outgoing_payment") == 0


class TestCancelPurchase:
    @pytest.mark.asyncio
    async def test_cancel_revokes_grant(
        self, purchase_service, merchant_wallet, buyer_wallet, grant_negotiator
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)

        record = await purchase_service.cancel_purchase(started.payment_id)

        assert record.status == PaymentStatus.FAILED
        assert record.error == "Cancelled by buyer"
        assert grant_negotiator.cancellations == [
            ("https://auth.buyer.example/continue/abc", "continue-token")
        ]

    @pytest.mark.asyncio
    async def test_cancel_completed_purchase_raises(
        self, purchase_service, merchant_wallet, buyer_wallet, resource_client
    ) -> None:
        started = await start(purchase_service, merchant_wallet, buyer_wallet)
        resource_client.polled_states = [COMPLETED]
        await purchase_service.complete_purchase(started.payment_id, "ref-1")

        with pytest.raises(PaymentAlreadyCompletedError):
            await purchase_service.cancel_purchase(started.payment_id)

    @pytest.mark.asyncio
    async def test_get_payment_status_unknown(self, purchase_service) -> None:
        with pytest.raises(PaymentNotFoundError):
            await purchase_service.get_payment_status("payment_missing")
