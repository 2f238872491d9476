"""
Idempotency — one cache of operation results: key → (result, expiry).

    from jobledger import idempotency as I

    executor = (
        I.idempotent(apply)
        .key(lambda cmd: f"event:{cmd.idempotency_key}")
        .fingerprint(lambda cmd: cmd.fingerprint())
        .store(I.MemoryStore())
        .policy(I.Policy().with_ttl(hours=24).with_on_pending(I.FAIL))
        .build()
    )

    match await executor.run(cmd):
        case Ok(I.IdempotencyResult(value=v, from_cache=replayed)): ...
        case Error(I.IdempotencyError(kind=kind)): ...

Used with the `event:`, `intent:` and `payrec:` key families. A repeated
call within the TTL replays the stored value and never re-runs the operation.
"""

from jobledger.idempotency._types import (
    RecordState,
    IdempotencyRecord,
    IdempotencyResult,
    IdempotencyError,
    IdempotencyErrorKind,
)
from jobledger.idempotency._store import (
    StoreError,
    Store,
    StoreAny,
    MemoryStore,
)
from jobledger.idempotency._policy import (
    OnPending,
    WAIT,
    FAIL,
    Policy,
)
from jobledger.idempotency._graph import (
    IdempotencySpec,
    run_idempotent,
)
from jobledger.idempotency._builder import (
    Idempotent,
    IdempotentExecutor,
    idempotent,
)
from jobledger.idempotency._sqlalchemy import (
    IdempotencyRow,
    SQLAlchemyStore,
    make_engine,
    init_schema,
    create_database,
)

__all__ = (
    # Types
    "RecordState",
    "IdempotencyRecord",
    "IdempotencyResult",
    "IdempotencyError",
    "IdempotencyErrorKind",
    # Store
    "StoreError",
    "Store",
    "StoreAny",
    "MemoryStore",
    "IdempotencyRow",
    "SQLAlchemyStore",
    "make_engine",
    "init_schema",
    "create_database",
    # Policy
    "OnPending",
    "WAIT",
    "FAIL",
    "Policy",
    # Execution
    "IdempotencySpec",
    "run_idempotent",
    "Idempotent",
    "IdempotentExecutor",
    "idempotent",
)
