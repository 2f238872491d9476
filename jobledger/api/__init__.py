"""
HTTP schemas: pydantic request models (to_domain → Op) and response
models (from_domain ← ok value), plus the route table.
"""

from jobledger.api._health import HealthIn, HealthOut
from jobledger.api._jobs import (
    CreateJobIn,
    JobOut,
    ApplyEventIn,
    EventAppliedOut,
)
from jobledger.api._payments import (
    IntentIn,
    IntentOut,
    NotifyPaidIn,
    PaymentNotifiedOut,
    SessionPaymentIn,
    SessionQuoteOut,
    TipsSummaryIn,
    TipsSummaryOut,
    PayTokenIn,
    PayTokenOut,
    PayVerifyIn,
    PayVerifyOut,
)
from jobledger.api._routes import endpoints

__all__ = (
    "HealthIn",
    "HealthOut",
    "CreateJobIn",
    "JobOut",
    "ApplyEventIn",
    "EventAppliedOut",
    "IntentIn",
    "IntentOut",
    "NotifyPaidIn",
    "PaymentNotifiedOut",
    "SessionPaymentIn",
    "SessionQuoteOut",
    "TipsSummaryIn",
    "TipsSummaryOut",
    "PayTokenIn",
    "PayTokenOut",
    "PayVerifyIn",
    "PayVerifyOut",
    "endpoints",
)
