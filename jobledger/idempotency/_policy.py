"""
Idempotency policy — behavior configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum, auto


# ═══════════════════════════════════════════════════════════════════════════════
# On Pending: Conflict Resolution Strategy
# ═══════════════════════════════════════════════════════════════════════════════


class OnPending(Enum):
    """
    What to do when a request arrives while another with the same key is pending.

    WAIT: Poll until the pending one finishes, return its result.
          Used for payment intents: a double-clicked checkout gets the same ref.

    FAIL: Immediately return CONFLICT.
          Used for event application: a duplicate in flight is a client bug.
    """

    WAIT = auto()
    FAIL = auto()


WAIT = OnPending.WAIT
FAIL = OnPending.FAIL


# ═══════════════════════════════════════════════════════════════════════════════
# Policy: Full Configuration
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Policy:
    """
    Idempotency policy configuration.

    Example:
        policy = (
            Policy()
            .with_ttl(hours=24)
            .with_on_pending(FAIL)
        )

    Note: Immutable — each method returns a new Policy.
    """

    result_ttl: timedelta | None = None
    conflict_strategy: OnPending = OnPending.WAIT
    pending_wait_timeout: timedelta = timedelta(seconds=30)
    poll_interval: timedelta = timedelta(milliseconds=100)

    def with_ttl(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
        hours: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        """
        Set TTL for completed records.

        After TTL, the operation can be re-executed.

        Example:
            .with_ttl(hours=24)
            .with_ttl(delta=settings.cache.intent_ttl)
        """
        if delta is not None:
            ttl_val: timedelta | None = delta
        else:
            total_seconds = (seconds or 0) + (minutes or 0) * 60 + (hours or 0) * 3600
            ttl_val = timedelta(seconds=total_seconds) if total_seconds > 0 else None
        return replace(self, result_ttl=ttl_val)

    def with_on_pending(self, strategy: OnPending) -> Policy:
        """Set conflict resolution strategy."""
        return replace(self, conflict_strategy=strategy)

    def with_wait_timeout(self, *, seconds: float) -> Policy:
        """Set max wait for a pending record (WAIT strategy only)."""
        return replace(self, pending_wait_timeout=timedelta(seconds=seconds))


__all__ = (
    "OnPending",
    "WAIT",
    "FAIL",
    "Policy",
)
