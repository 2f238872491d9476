"""
Ops — request values dispatched to handlers with automatic DI.

    from jobledger import ops as O

    runner = O.catalog().compile().inject(DispatchService, dispatch)
    result = await runner.run(O.ApplyEvent(job_id="J1", event="arrived"))

Handlers get their Op plus whatever the runner has injected, matched by
type hint.
"""

from jobledger.ops._core import (
    Op,
    OpsBuilder,
    Runner,
    HandlerFunc,
    ops,
)
from jobledger.ops._handlers import (
    CreateJob,
    ApplyEvent,
    CreateIntent,
    NotifyPaid,
    QuoteSessionPayment,
    GetTipsSummary,
    IssuePayToken,
    VerifyPayToken,
    Health,
    catalog,
)

__all__ = (
    # Core
    "Op",
    "OpsBuilder",
    "Runner",
    "HandlerFunc",
    "ops",
    # Catalog
    "CreateJob",
    "ApplyEvent",
    "CreateIntent",
    "NotifyPaid",
    "QuoteSessionPayment",
    "GetTipsSummary",
    "IssuePayToken",
    "VerifyPayToken",
    "Health",
    "catalog",
)
