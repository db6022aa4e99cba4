"""Storage abstractions and in-process implementation for repositories."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional


class KeyValueStore(ABC):
    """Abstract key-value store with minimal operations used by repositories."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(
        self, key: str, value: str, ttl_seconds: Optional[float] = None
    ) -> None:
        pass

    @abstractmethod
    async def count(self, prefix: str = "") -> int:
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local KeyValueStore with per-key expiry.

    Expired keys are invisible to reads immediately and are reclaimed by
    `purge_expired`.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._data: Dict[str, tuple[str, Optional[float]]] = {}

    def _is_expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and expires_at <= self._clock()

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._is_expired(expires_at):
            del self._data[key]
            return None
        return value

    async def set(
        self, key: str, value: str, ttl_seconds: Optional[float] = None
    ) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = (value, expires_at)

    async def count(self, prefix: str = "") -> int:
        return sum(
            1
            for key, (_, expires_at) in self._data.items()
            if key.startswith(prefix) and not self._is_expired(expires_at)
        )

    async def purge_expired(self) -> int:
        expired = [k for k, (_, exp) in self._data.items() if self._is_expired(exp)]
        for key in expired:
            del self._data[key]
        return len(expired)
