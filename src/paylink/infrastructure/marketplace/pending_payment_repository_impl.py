"""Pending payment repository implementation over a storage abstraction."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from ...domain.marketplace.entities import PendingPaymentRecord
from ...domain.marketplace.pending_payment_repository import (
    PendingPaymentRepository,
)
from ..storage import KeyValueStore

KEY_PREFIX = "pending_payment:"


class PendingPaymentRepositoryImpl(PendingPaymentRepository):
    """Pending payment repository using a KeyValueStore.

    Every record is written with the configured time-to-live, so abandoned
    purchases disappear on their own. Read-modify-write cycles are serialized
    by a single lock.
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: Optional[float] = 86400):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(payment_id: str) -> str:
        return f"{KEY_PREFIX}{payment_id}"

    async def _load(self, payment_id: str) -> Optional[PendingPaymentRecord]:
        data = await self.store.get(self._key(payment_id))
        if not data:
            return None
        return PendingPaymentRecord.model_validate_json(data)

    async def _save(self, record: PendingPaymentRecord) -> None:
        await self.store.set(
            self._key(record.payment_id),
            record.model_dump_json(),
            ttl_seconds=self.ttl_seconds,
        )

    async def put(self, record: PendingPaymentRecord) -> PendingPaymentRecord:
        async with self._lock:
            await self._save(record)
        return record

    async def get(self, payment_id: str) -> Optional[PendingPaymentRecord]:
        return await self._load(payment_id)

    async def update(
        self,
        payment_id: str,
        mutator: Callable[[PendingPaymentRecord], None],
    ) -> Optional[PendingPaymentRecord]:
        async with self._lock:
            record = await self._load(payment_id)
            if record is None:
                return None
            mutator(record)
            await self._save(record)
            return record

    async def expire(self) -> int:
        return await self.store.purge_expired()

    async def count(self) -> int:
        return await self.store.count(KEY_PREFIX)
