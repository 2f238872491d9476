"""
Operation catalog: request values and their handlers.

Each handler takes its Op plus the services it needs; the runner injects
the services by type.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Never

from kungfu import Result, Ok

from jobledger._types import isoformat, utcnow
from jobledger.config import Settings
from jobledger.dispatch import DispatchService, EventApplied, Job, JobDraft
from jobledger.errors import CoreError
from jobledger.payments import (
    Intent,
    NotifyPaidCommand,
    PaymentNotified,
    PayToken,
    PayTokenClaims,
    PaymentService,
    SessionQuote,
    TipsSummary,
)
from jobledger.ops._core import Op, OpsBuilder, ops


# ═══════════════════════════════════════════════════════════════════════════════
# Jobs
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CreateJob(Op[Job, CoreError]):
    draft: JobDraft


@dataclass(frozen=True, slots=True)
class ApplyEvent(Op[EventApplied, CoreError]):
    job_id: str
    event: str
    status: str | None = None
    by: str | None = None
    data: Any = None
    idempotency_key: str | None = None


async def create_job(req: CreateJob, dispatch: DispatchService) -> Result[Job, CoreError]:
    return await dispatch.create_job(req.draft)


async def apply_event(req: ApplyEvent, dispatch: DispatchService) -> Result[EventApplied, CoreError]:
    return await dispatch.apply_event(
        req.job_id,
        req.event,
        status=req.status,
        by=req.by,
        data=req.data,
        idempotency_key=req.idempotency_key,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CreateIntent(Op[Intent, CoreError]):
    session_id: str
    payment_stage: str
    amount: Decimal | None = None
    package_code: str | None = None
    payment_method: str | None = None


@dataclass(frozen=True, slots=True)
class NotifyPaid(Op[PaymentNotified, CoreError]):
    command: NotifyPaidCommand


@dataclass(frozen=True, slots=True)
class QuoteSessionPayment(Op[SessionQuote, CoreError]):
    session_id: str
    payment_stage: str
    tips_amount: Decimal | None = None


@dataclass(frozen=True, slots=True)
class GetTipsSummary(Op[TipsSummary, CoreError]):
    session_id: str


async def create_intent(req: CreateIntent, payments: PaymentService) -> Result[Intent, CoreError]:
    return await payments.create_or_get_intent(
        req.session_id,
        req.payment_stage,
        amount=req.amount,
        package_code=req.package_code,
        payment_method=req.payment_method,
    )


async def notify_paid(req: NotifyPaid, payments: PaymentService) -> Result[PaymentNotified, CoreError]:
    return await payments.notify_paid(req.command)


async def quote_session_payment(
    req: QuoteSessionPayment, payments: PaymentService
) -> Result[SessionQuote, CoreError]:
    return await payments.quote_session_payment(
        req.session_id, req.payment_stage, tips_amount=req.tips_amount
    )


async def tips_summary(req: GetTipsSummary, payments: PaymentService) -> Result[TipsSummary, CoreError]:
    return await payments.tips_summary(req.session_id)


@dataclass(frozen=True, slots=True)
class IssuePayToken(Op[PayToken, CoreError]):
    invoice: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class VerifyPayToken(Op[PayTokenClaims, CoreError]):
    token: str


async def issue_pay_token(req: IssuePayToken, payments: PaymentService) -> Result[PayToken, CoreError]:
    return await payments.issue_pay_token(req.invoice)


async def verify_pay_token(
    req: VerifyPayToken, payments: PaymentService
) -> Result[PayTokenClaims, CoreError]:
    return await payments.verify_pay_token(req.token)


# ═══════════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Health(Op[dict[str, Any], Never]):
    pass


async def health(req: Health, settings: Settings) -> Result[dict[str, Any], Never]:
    """Liveness plus which integrations are configured. Never calls them."""
    return Ok(
        {
            "service": "jobledger",
            "time": isoformat(utcnow()),
            "integrations": {
                "airtable": settings.airtable.configured,
                "telegram": settings.telegram.configured,
                "realtime": settings.realtime.configured,
                "turnstile": bool(settings.guards.turnstile_secret),
                "durable_cache": bool(settings.idempotency_db_url),
                "pay_tokens": bool(settings.pay_tokens.secret),
            },
        }
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


def catalog() -> OpsBuilder:
    """Every op of the service, registered."""
    return (
        ops()
        .on(Health, health)
        .on(CreateJob, create_job)
        .on(ApplyEvent, apply_event)
        .on(CreateIntent, create_intent)
        .on(NotifyPaid, notify_paid)
        .on(QuoteSessionPayment, quote_session_payment)
        .on(GetTipsSummary, tips_summary)
        .on(IssuePayToken, issue_pay_token)
        .on(VerifyPayToken, verify_pay_token)
    )


__all__ = (
    "CreateJob",
    "ApplyEvent",
    "CreateIntent",
    "NotifyPaid",
    "QuoteSessionPayment",
    "GetTipsSummary",
    "IssuePayToken",
    "VerifyPayToken",
    "Health",
    "create_job",
    "apply_event",
    "create_intent",
    "notify_paid",
    "quote_session_payment",
    "tips_summary",
    "issue_pay_token",
    "verify_pay_token",
    "health",
    "catalog",
)
