"""
Dispatch — job lifecycle state machine with the final-payment gate.

    from jobledger import dispatch as D

    service = D.DispatchService(records, notifier, rooms, cache)
    match await service.apply_event("J1", "Arrived", idempotency_key="k-1"):
        case Ok(D.EventApplied(status=status)): ...
        case Error(ConflictError(code="final_payment_required")): ...
"""

from jobledger.dispatch._status import (
    JobStatus,
    CANONICAL_ORDER,
    parse_status,
    rank,
    is_regression,
)
from jobledger.dispatch._normalize import (
    LIVE_CHAT_EVENT,
    normalize_event_name,
    is_live_chat_signal,
)
from jobledger.dispatch._events import Event, EventLog
from jobledger.dispatch._job import JOBS_TABLE, Job, JobDraft
from jobledger.dispatch._service import (
    FOLLOW_UP_FLOWS,
    ApplyEventCommand,
    SideEffect,
    EventApplied,
    DispatchService,
)

__all__ = (
    # Statuses
    "JobStatus",
    "CANONICAL_ORDER",
    "parse_status",
    "rank",
    "is_regression",
    # Normalization
    "LIVE_CHAT_EVENT",
    "normalize_event_name",
    "is_live_chat_signal",
    # Model
    "Event",
    "EventLog",
    "JOBS_TABLE",
    "Job",
    "JobDraft",
    # Service
    "FOLLOW_UP_FLOWS",
    "ApplyEventCommand",
    "SideEffect",
    "EventApplied",
    "DispatchService",
)
