"""Pending payment domain repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional

from .entities import PendingPaymentRecord


class PendingPaymentRepository(ABC):
    """Abstract repository for purchases awaiting consent or settlement."""

    @abstractmethod
    async def put(self, record: PendingPaymentRecord) -> PendingPaymentRecord:
        """Store a new record, replacing any record with the same payment id."""
        pass

    @abstractmethod
    async def get(self, payment_id: str) -> Optional[PendingPaymentRecord]:
        """Get a record by payment id, or None when unknown or expired."""
        pass

    @abstractmethod
    async def update(
        self,
        payment_id: str,
        mutator: Callable[[PendingPaymentRecord], None],
    ) -> Optional[PendingPaymentRecord]:
        """
        Atomically load a record, apply `mutator` to it and store it back.

        Returns the updated record, or None when the payment id is unknown.
        Exceptions raised by the mutator propagate and leave the stored
        record untouched.
        """
        pass

    @abstractmethod
    async def expire(self) -> int:
        """Drop records past their time-to-live and return how many were removed."""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Number of live records."""
        pass
