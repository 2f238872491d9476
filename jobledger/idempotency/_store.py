"""
Idempotency store — typed storage protocol.

Store[T] — stores records with typed value T.
All methods return Result for explicit error handling.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol, Any

from kungfu import Result, Ok, Error

from jobledger._types import Clock, utcnow
from jobledger.idempotency._types import (
    RecordState,
    IdempotencyRecord,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Store Error
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class StoreError:
    """Storage operation error."""

    message: str
    cause: Exception | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Store Protocol: Typed, Result-based
# ═══════════════════════════════════════════════════════════════════════════════


class Store[T](Protocol):
    """
    Typed idempotency store protocol.

    Note: Implementations must never return an expired record from get()
    and must make set_pending() a compare-and-swap.
    """

    async def get(
        self, key: str
    ) -> Result[IdempotencyRecord[T] | None, StoreError]:
        """Get live record. Returns Ok(None) if missing or expired."""
        ...

    async def set_pending(
        self,
        key: str,
        ttl: timedelta | None,
        input_hash: str | None = None,
    ) -> Result[bool, StoreError]:
        """
        Atomically claim the key.

        Returns Ok(True) if claimed, Ok(False) if a live record exists.
        """
        ...

    async def set_completed(
        self,
        key: str,
        value: T,
        ttl: timedelta | None,
    ) -> Result[None, StoreError]:
        """Store completed result."""
        ...

    async def delete(self, key: str) -> Result[bool, StoreError]:
        """Delete record. Returns Ok(True) if existed."""
        ...


# Type alias for Store with Any value type
type StoreAny = Store[Any]


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Store: single process, tests
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class _StoredRecord[T]:
    """Internal mutable record for MemoryStore."""

    key: str
    state: RecordState
    value: T | None
    created_at: datetime
    expires_at: datetime | None
    input_hash: str | None = None

    def expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_record(self) -> IdempotencyRecord[T]:
        return IdempotencyRecord(
            key=self.key,
            state=self.state,
            value=self.value,
            created_at=self.created_at,
            expires_at=self.expires_at,
            input_hash=self.input_hash,
        )


class MemoryStore[T]:
    """
    In-memory idempotency store.

    Note: Single-instance only. Data does not survive a restart.
    The clock is injectable so TTL expiry can be tested without sleeping.
    Every claim sweeps expired records, so keys that are never read again
    do not accumulate.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._records: dict[str, _StoredRecord[T]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> _StoredRecord[T] | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.expired(self._clock()):
            del self._records[key]
            return None
        return record

    def _sweep(self) -> int:
        now = self._clock()
        stale = [key for key, record in self._records.items() if record.expired(now)]
        for key in stale:
            del self._records[key]
        return len(stale)

    def _expiry(self, ttl: timedelta | None) -> datetime | None:
        return self._clock() + ttl if ttl else None

    async def get(
        self, key: str
    ) -> Result[IdempotencyRecord[T] | None, StoreError]:
        async with self._lock:
            record = self._live(key)
            return Ok(record.to_record() if record is not None else None)

    async def set_pending(
        self,
        key: str,
        ttl: timedelta | None,
        input_hash: str | None = None,
    ) -> Result[bool, StoreError]:
        async with self._lock:
            self._sweep()
            if key in self._records:
                return Ok(False)

            self._records[key] = _StoredRecord(
                key=key,
                state=RecordState.PENDING,
                value=None,
                created_at=self._clock(),
                expires_at=self._expiry(ttl),
                input_hash=input_hash,
            )
            return Ok(True)

    async def set_completed(
        self,
        key: str,
        value: T,
        ttl: timedelta | None,
    ) -> Result[None, StoreError]:
        async with self._lock:
            existing = self._records.get(key)
            if existing is None:
                return Error(StoreError(f"No pending record for key: {key}"))

            existing.state = RecordState.COMPLETED
            existing.value = value
            existing.expires_at = self._expiry(ttl)
            return Ok(None)

    async def delete(self, key: str) -> Result[bool, StoreError]:
        async with self._lock:
            return Ok(self._records.pop(key, None) is not None)

    async def purge_expired(self) -> Result[int, StoreError]:
        """Delete every expired record. Returns the number removed."""
        async with self._lock:
            return Ok(self._sweep())

    def __len__(self) -> int:
        return len(self._records)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "StoreError",
    "Store",
    "StoreAny",
    "MemoryStore",
)
