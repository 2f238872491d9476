"""
Idempotency builder — fluent API over graph.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from collections.abc import Callable

from kungfu import LazyCoroResult, Result

from jobledger.idempotency._types import (
    IdempotencyResult,
    IdempotencyError,
)
from jobledger.idempotency._store import StoreAny, MemoryStore
from jobledger.idempotency._policy import Policy
from jobledger.idempotency._graph import IdempotencySpec, run_idempotent


# ═══════════════════════════════════════════════════════════════════════════════
# Key / Fingerprint Function Types
# ═══════════════════════════════════════════════════════════════════════════════

type KeyFn[K] = Callable[[K], str]
type FingerprintFn[K] = Callable[[K], str]


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotent Builder
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(slots=True, frozen=True)
class Idempotent[K, T, E]:
    """
    Fluent idempotency builder.
    """
    _operation: Callable[[K], LazyCoroResult[T, E]]
    _key_fn: KeyFn[K] | None
    _fingerprint_fn: FingerprintFn[K] | None
    _store: StoreAny | None
    _policy: Policy

    def key(self, fn: KeyFn[K]) -> Idempotent[K, T, E]:
        """Set key extraction function."""
        return replace(self, _key_fn=fn)

    def fingerprint(self, fn: FingerprintFn[K]) -> Idempotent[K, T, E]:
        """Set input fingerprint for key-reuse detection."""
        return replace(self, _fingerprint_fn=fn)

    def store(self, s: StoreAny) -> Idempotent[K, T, E]:
        """Set storage backend."""
        return replace(self, _store=s)

    def policy(self, p: Policy) -> Idempotent[K, T, E]:
        """Set idempotency policy."""
        return replace(self, _policy=p)

    def build(self) -> IdempotentExecutor[K, T, E]:
        """Build executable."""
        if self._key_fn is None:
            raise ValueError("key() is required")

        store: StoreAny = self._store if self._store is not None else MemoryStore()

        return IdempotentExecutor(
            operation=self._operation,
            key_fn=self._key_fn,
            fingerprint_fn=self._fingerprint_fn,
            store=store,
            policy=self._policy,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotent Executor
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(slots=True, frozen=True)
class IdempotentExecutor[K, T, E]:
    """
    Compiled idempotent executor.

    Note: Thin wrapper — creates IdempotencySpec and runs graph.
    """
    operation: Callable[[K], LazyCoroResult[T, E]]
    key_fn: KeyFn[K]
    fingerprint_fn: FingerprintFn[K] | None
    store: StoreAny
    policy: Policy

    def run(self, input_val: K) -> LazyCoroResult[IdempotencyResult[T], IdempotencyError[E]]:
        """Execute with idempotency via graph."""
        spec = IdempotencySpec(
            key=self.key_fn(input_val),
            input_value=input_val,
            operation=self.operation,
            store=self.store,
            policy=self.policy,
            input_hash=self.fingerprint_fn(input_val) if self.fingerprint_fn else None,
        )

        async def execute() -> Result[IdempotencyResult[T], IdempotencyError[E]]:
            return await run_idempotent(spec)

        return LazyCoroResult(execute)


# ═══════════════════════════════════════════════════════════════════════════════
# idempotent(): Entry Point
# ═══════════════════════════════════════════════════════════════════════════════

def idempotent[K, T, E](
    operation: Callable[[K], LazyCoroResult[T, E]],
) -> Idempotent[K, T, E]:
    """
    Create idempotent wrapper for an operation.

    Example:
        executor = (
            I.idempotent(self._apply)
            .key(lambda cmd: f"event:{cmd.idempotency_key}")
            .fingerprint(ApplyEventCommand.fingerprint)
            .store(store)
            .policy(I.Policy().with_ttl(hours=24).with_on_pending(I.FAIL))
            .build()
        )

        result = await executor.run(cmd)
    """
    return Idempotent(
        _operation=operation,
        _key_fn=None,
        _fingerprint_fn=None,
        _store=None,
        _policy=Policy(),
    )


__all__ = (
    "Idempotent",
    "IdempotentExecutor",
    "idempotent",
    "KeyFn",
    "FingerprintFn",
)
