"""Polling an outgoing payment until it settles."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ....domain.marketplace.entities import OutgoingPayment, OutgoingPaymentState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementOutcome:
    payment: OutgoingPayment
    attempts: int
    timed_out: bool

    @property
    def state(self) -> Optional[OutgoingPaymentState]:
        return self.payment.state


class SettlementPoller:
    """Re-reads an outgoing payment at a fixed interval until COMPLETED or FAILED.

    The payment passed in is checked first, so a payment that is already
    terminal costs no requests. After that at most `max_attempts` reads are
    made, each preceded by a sleep of `interval_seconds`. Cancellation of the
    surrounding task propagates out of the sleep.
    """

    def __init__(
        self,
        interval_seconds: float = 2.0,
        max_attempts: int = 10,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be non-negative")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep or asyncio.sleep

    @property
    def max_wait_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts

    async def wait_for_terminal_state(
        self,
        payment: OutgoingPayment,
        fetch: Callable[[], Awaitable[OutgoingPayment]],
    ) -> SettlementOutcome:
        current = payment
        attempts = 0
        while current.state is None or not current.state.is_terminal:
            if attempts >= self.max_attempts:
                logger.warning(
                    "Outgoing payment %s still %s after %d checks over %.1fs",
                    current.id,
                    current.state.value if current.state else None,
                    attempts,
                    self.max_wait_seconds,
                )
                return SettlementOutcome(current, attempts, timed_out=True)
            await self._sleep(self.interval_seconds)
            current = await fetch()
            attempts += 1
            logger.debug(
                "Outgoing payment %s check %d/%d: %s",
                current.id,
                attempts,
                self.max_attempts,
                current.state.value if current.state else None,
            )
        return SettlementOutcome(current, attempts, timed_out=False)
