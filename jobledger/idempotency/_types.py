"""
Idempotency types — core data structures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto


# ═══════════════════════════════════════════════════════════════════════════════
# Record State: Operation Lifecycle
# ═══════════════════════════════════════════════════════════════════════════════


class RecordState(Enum):
    """
    State of an idempotency record.

    Lifecycle:
        PENDING → COMPLETED (success)
                → deleted (error, the key is free again)
        COMPLETED → expired after the policy TTL
    """

    PENDING = "pending"
    COMPLETED = "completed"


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency Record: Stored State
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IdempotencyRecord[T]:
    """
    A stored idempotency record: key → (result, expiry).

    Note: value is set only for COMPLETED.
    Stores never hand out expired records; expiry is checked on read.

    input_hash: fingerprint of the input that produced the record. A later
    call with the same key and a different fingerprint is a key reuse.
    """

    key: str
    state: RecordState
    value: T | None
    created_at: datetime
    expires_at: datetime | None
    input_hash: str | None = None

    def expired_at(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    @property
    def is_pending(self) -> bool:
        return self.state == RecordState.PENDING

    @property
    def is_completed(self) -> bool:
        return self.state == RecordState.COMPLETED


# ═══════════════════════════════════════════════════════════════════════════════
# Result Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IdempotencyResult[T]:
    """
    Successful idempotent execution.

    Note: from_cache is True when the stored result was replayed.
    """

    value: T
    from_cache: bool
    key: str


class IdempotencyErrorKind(Enum):
    """Kinds of idempotency errors."""

    CONFLICT = auto()  # Concurrent request with same key (FAIL policy)
    TIMEOUT = auto()  # Waiting for pending timed out (WAIT policy)
    STORE_ERROR = auto()  # Storage backend error
    EXECUTION = auto()  # Wrapped operation failed
    INPUT_MISMATCH = auto()  # Cached result has different input hash


@dataclass(frozen=True, slots=True)
class IdempotencyError[E]:
    """
    Idempotency operation error.

    Note: original_error carries the wrapped operation's error for EXECUTION.
    """

    kind: IdempotencyErrorKind
    message: str
    original_error: E | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "RecordState",
    "IdempotencyRecord",
    "IdempotencyResult",
    "IdempotencyError",
    "IdempotencyErrorKind",
)
