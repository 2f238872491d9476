"""
Payments — transaction references, paid notifications and ledgers.

    from jobledger import payments as P

    service = P.PaymentService(records, notifier, cache)
    match await service.create_or_get_intent("S1", "deposit", amount=Decimal(4000)):
        case Ok(P.Intent(transaction_ref=ref, idempotent=reused)): ...

    match await service.notify_paid(P.NotifyPaidCommand(transaction_ref=ref)):
        case Ok(P.PaymentNotified(already_paid=True)): ...

    match await service.verify_pay_token(token):
        case Ok(P.PayTokenClaims(source="cache", payload=invoice)): ...
"""

from jobledger.payments._amounts import (
    deposit_expected,
    deposit_charge,
    final_due,
    award_points,
    money,
)
from jobledger.payments._types import (
    PAYMENTS_TABLE,
    SESSIONS_TABLE,
    PACKAGES_TABLE,
    MEMBER_PACKAGES_TABLE,
    POINTS_LEDGER_TABLE,
    CURRENCY,
    PaymentStage,
    SESSION_PAID_STATUS,
    QUOTABLE_STAGES,
    normalize_stage,
    is_service_stage,
    IntentRequest,
    PaymentDraft,
    Intent,
    NotifyPaidCommand,
    StepStatus,
    StepOutcome,
    PaymentNotified,
    SessionQuote,
    TipsPayment,
    TipsSummary,
    PayTokenGrant,
    PayToken,
    PayTokenClaims,
)
from jobledger.payments._tokens import sign_token, read_token
from jobledger.payments._service import PaymentService, parse_notes

__all__ = (
    # Amounts
    "deposit_expected",
    "deposit_charge",
    "final_due",
    "award_points",
    "money",
    # Tables
    "PAYMENTS_TABLE",
    "SESSIONS_TABLE",
    "PACKAGES_TABLE",
    "MEMBER_PACKAGES_TABLE",
    "POINTS_LEDGER_TABLE",
    "CURRENCY",
    # Stages
    "PaymentStage",
    "SESSION_PAID_STATUS",
    "QUOTABLE_STAGES",
    "normalize_stage",
    "is_service_stage",
    # Commands / results
    "IntentRequest",
    "PaymentDraft",
    "Intent",
    "NotifyPaidCommand",
    "StepStatus",
    "StepOutcome",
    "PaymentNotified",
    "SessionQuote",
    "TipsPayment",
    "TipsSummary",
    "PayTokenGrant",
    "PayToken",
    "PayTokenClaims",
    # Pay tokens
    "sign_token",
    "read_token",
    # Service
    "PaymentService",
    "parse_notes",
)
