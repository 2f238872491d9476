"""
Idempotency graph — the decision as nodnod nodes.

Architecture:
    IdempotencySpec (injected)
         │
         ▼
    SpecNode
         │
         ▼
    FetchRecordNode
         │
         ├── StoreErrorNode ───────┐
         ├── CompletedRecordNode ──┤
         │     └── ValidatedInputNode
         ├── PendingRecordNode ────┼── IdempotencyOutcome (@polymorphic)
         │                         │             │
         └── NoRecordNode ─────────┘             ▼
                                          FinalResultNode

Note: No 'from __future__ import annotations' here:
nodnod reads type hints at runtime for dependency resolution.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from nodnod import NodeError, polymorphic, case

from kungfu import Result, Ok, Error

from jobledger import graph as G
from jobledger.idempotency._types import (
    RecordState,
    IdempotencyRecord,
    IdempotencyResult,
    IdempotencyError,
    IdempotencyErrorKind,
)
from jobledger.idempotency._store import StoreError, StoreAny
from jobledger.idempotency._policy import Policy, OnPending

log = logging.getLogger("jobledger.idempotency")


# ═══════════════════════════════════════════════════════════════════════════════
# Input: Spec (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class IdempotencySpec:
    """
    Complete specification for one idempotent execution.

    Note: input_hash is an optional fingerprint. When both the stored record
    and the call carry one and they differ, the call is a key reuse.
    """

    key: str
    input_value: Any
    operation: Any
    store: StoreAny
    policy: Policy
    input_hash: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Entry Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class SpecNode:
    """Wraps IdempotencySpec for graph."""

    def __init__(self, spec: IdempotencySpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, spec: IdempotencySpec) -> "SpecNode":
        return cls(spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Fetch Record
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FetchRecordNode:
    """Fetches the live record from store."""

    def __init__(
        self,
        record: IdempotencyRecord[Any] | None,
        spec: IdempotencySpec,
        store_error: StoreError | None = None,
    ) -> None:
        self.record = record
        self.spec = spec
        self.store_error = store_error

    @classmethod
    async def __compose__(cls, spec_node: SpecNode) -> "FetchRecordNode":
        spec = spec_node.spec
        match await spec.store.get(spec.key):
            case Ok(record):
                return cls(record, spec)
            case Error(err):
                return cls(None, spec, store_error=err)


# ═══════════════════════════════════════════════════════════════════════════════
# State Nodes: each validates one record state
# ═══════════════════════════════════════════════════════════════════════════════


def _require_state(fetch: FetchRecordNode, state: RecordState) -> IdempotencyRecord[Any]:
    record = fetch.record
    if record is None:
        raise NodeError("No record")
    if record.state != state:
        raise NodeError(f"Not {state.value}")
    return record


@G.node
class CompletedRecordNode:
    """Validates: record exists and is COMPLETED."""

    def __init__(
        self, record: IdempotencyRecord[Any], spec: IdempotencySpec
    ) -> None:
        self.record = record
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchRecordNode) -> "CompletedRecordNode":
        return cls(_require_state(fetch, RecordState.COMPLETED), fetch.spec)


@G.node
class PendingRecordNode:
    """Validates: record exists and is PENDING."""

    def __init__(
        self, record: IdempotencyRecord[Any], spec: IdempotencySpec
    ) -> None:
        self.record = record
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchRecordNode) -> "PendingRecordNode":
        return cls(_require_state(fetch, RecordState.PENDING), fetch.spec)


@G.node
class NoRecordNode:
    """Validates: store answered and there is no live record."""

    def __init__(self, spec: IdempotencySpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchRecordNode) -> "NoRecordNode":
        if fetch.store_error is not None:
            raise NodeError("Store error")
        if fetch.record is not None:
            raise NodeError("Record exists")
        return cls(fetch.spec)


@G.node
class StoreErrorNode:
    """Validates: store returned error."""

    def __init__(self, error: StoreError, spec: IdempotencySpec) -> None:
        self.error = error
        self.spec = spec

    @classmethod
    def __compose__(cls, fetch: FetchRecordNode) -> "StoreErrorNode":
        if fetch.store_error is None:
            raise NodeError("No store error")
        return cls(fetch.store_error, fetch.spec)


@G.node
class ValidatedInputNode:
    """
    Validates: input fingerprint matches the completed record.

    Note: A side without a fingerprint is accepted.
    """

    def __init__(self, completed: CompletedRecordNode) -> None:
        self.completed = completed

    @classmethod
    def __compose__(cls, completed: CompletedRecordNode) -> "ValidatedInputNode":
        expected = completed.spec.input_hash
        stored = completed.record.input_hash
        if expected is not None and stored is not None and expected != stored:
            raise NodeError("Input hash mismatch")
        return cls(completed)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OutcomeOk:
    """Successful outcome."""

    value: Any
    from_cache: bool
    key: str


@dataclass(frozen=True)
class OutcomeError:
    """Error outcome."""

    kind: IdempotencyErrorKind
    message: str
    original_error: Any | None


type Outcome = OutcomeOk | OutcomeError


def _store_failure(err: StoreError) -> OutcomeError:
    return OutcomeError(
        kind=IdempotencyErrorKind.STORE_ERROR,
        message=err.message,
        original_error=err.cause,
    )


async def _execute(spec: IdempotencySpec) -> Outcome:
    """Run the operation on a claimed key and record its result."""
    try:
        result: Result[Any, Any] = await spec.operation(spec.input_value)
    except Exception as e:
        log.exception("idempotent operation raised key=%s", spec.key)
        await spec.store.delete(spec.key)
        return OutcomeError(
            kind=IdempotencyErrorKind.EXECUTION,
            message=str(e),
            original_error=e,
        )

    match result:
        case Ok(value):
            match await spec.store.set_completed(spec.key, value, spec.policy.result_ttl):
                case Error(err):
                    # The operation already took effect; report it and keep going.
                    log.warning(
                        "result not cached key=%s: %s", spec.key, err.message
                    )
                case Ok(_):
                    pass
            return OutcomeOk(value=value, from_cache=False, key=spec.key)
        case Error(err):
            # Failures are not cached; the next call with this key runs again.
            await spec.store.delete(spec.key)
            return OutcomeError(
                kind=IdempotencyErrorKind.EXECUTION,
                message="Operation returned Error",
                original_error=err,
            )


# ═══════════════════════════════════════════════════════════════════════════════
# Polymorphic Outcome: each case depends on a validated state node
# ═══════════════════════════════════════════════════════════════════════════════


@polymorphic[Outcome]
class IdempotencyOutcome:
    """
    Polymorphic router — exactly one @case resolves per run.

    Note: State checks live in the state nodes; cases only decide.
    """

    @case
    def store_error(cls, node: StoreErrorNode) -> Outcome:
        """STORE_ERROR — storage lookup failed."""
        return _store_failure(node.error)

    @case
    def cached_completed(cls, validated: ValidatedInputNode) -> Outcome:
        """Replay the stored COMPLETED result."""
        node = validated.completed
        return OutcomeOk(
            value=node.record.value,
            from_cache=True,
            key=node.spec.key,
        )

    @case
    def input_mismatch(cls, completed: CompletedRecordNode) -> Outcome:
        """
        INPUT_MISMATCH — same key, different input.

        Note: Resolves only when ValidatedInputNode failed.
        """
        spec = completed.spec
        record = completed.record
        if spec.input_hash is None or record.input_hash is None:
            raise NodeError("No fingerprint")
        if record.input_hash == spec.input_hash:
            raise NodeError("Hash matches")

        return OutcomeError(
            kind=IdempotencyErrorKind.INPUT_MISMATCH,
            message=f"Key reused with different input: {spec.key}",
            original_error=None,
        )

    @case
    def pending_conflict(cls, node: PendingRecordNode) -> Outcome:
        """CONFLICT (pending + FAIL policy)."""
        if node.spec.policy.conflict_strategy != OnPending.FAIL:
            raise NodeError("Policy not FAIL")
        return OutcomeError(
            kind=IdempotencyErrorKind.CONFLICT,
            message=f"Request in progress: {node.spec.key}",
            original_error=None,
        )

    @case
    async def pending_wait(cls, node: PendingRecordNode) -> Outcome:
        """Poll the pending record until it settles (WAIT policy)."""
        spec = node.spec
        if spec.policy.conflict_strategy != OnPending.WAIT:
            raise NodeError("Policy not WAIT")

        timeout = spec.policy.pending_wait_timeout.total_seconds()
        interval = spec.policy.poll_interval.total_seconds()
        elapsed = 0.0

        while elapsed < timeout:
            await asyncio.sleep(interval)
            elapsed += interval

            match await spec.store.get(spec.key):
                case Error(err):
                    return _store_failure(err)
                case Ok(None):
                    # First attempt failed without caching; claim and run ourselves.
                    return await _claim_and_execute(spec)
                case Ok(record) if record.state == RecordState.COMPLETED:
                    return OutcomeOk(value=record.value, from_cache=True, key=spec.key)
                case Ok(_):
                    continue

        return OutcomeError(
            kind=IdempotencyErrorKind.TIMEOUT,
            message="Timeout waiting for pending operation",
            original_error=None,
        )

    @case
    async def execute_new(cls, node: NoRecordNode) -> Outcome:
        """Execute operation (no live record)."""
        return await _claim_and_execute(node.spec)


async def _claim_and_execute(spec: IdempotencySpec) -> Outcome:
    match await spec.store.set_pending(spec.key, spec.policy.result_ttl, spec.input_hash):
        case Error(err):
            return _store_failure(err)
        case Ok(False):
            # Lost the race; replay the winner if it already finished.
            match await spec.store.get(spec.key):
                case Ok(rec) if rec is not None and rec.state == RecordState.COMPLETED:
                    return OutcomeOk(value=rec.value, from_cache=True, key=spec.key)
                case _:
                    return OutcomeError(
                        kind=IdempotencyErrorKind.CONFLICT,
                        message=f"Request in progress: {spec.key}",
                        original_error=None,
                    )
        case Ok(_):
            return await _execute(spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FinalResultNode:
    """Converts Outcome to typed Result."""

    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: IdempotencyOutcome) -> "FinalResultNode":
        return cls(outcome.value)

    def to_result(self) -> Result[IdempotencyResult[Any], IdempotencyError[Any]]:
        match self.outcome:
            case OutcomeOk(value=v, from_cache=fc, key=k):
                return Ok(IdempotencyResult(value=v, from_cache=fc, key=k))
            case OutcomeError(kind=kind, message=msg, original_error=orig):
                return Error(
                    IdempotencyError(kind=kind, message=msg, original_error=orig)
                )


# ═══════════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════════


async def run_idempotent(
    spec: IdempotencySpec,
) -> Result[IdempotencyResult[Any], IdempotencyError[Any]]:
    """Execute idempotent operation via graph."""
    node = await G.run(FinalResultNode).inject(spec)
    return node.to_result()


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "IdempotencySpec",
    "Outcome",
    "OutcomeOk",
    "OutcomeError",
    "IdempotencyOutcome",
    "FinalResultNode",
    "run_idempotent",
)
