"""
Payment stages, commands and results.

Result types are JSON-native through to_dict()/from_dict() so they can be
stored in the idempotency cache and replayed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from jobledger.payments._amounts import money

PAYMENTS_TABLE = "payments"
SESSIONS_TABLE = "sessions"
PACKAGES_TABLE = "packages"
MEMBER_PACKAGES_TABLE = "member_packages"
POINTS_LEDGER_TABLE = "points_ledger"

CURRENCY = "THB"


# ═══════════════════════════════════════════════════════════════════════════════
# Stages
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentStage(StrEnum):
    DEPOSIT = "deposit"
    FINAL = "final"
    TIPS = "tips"
    MEMBERSHIP = "membership"


# Session payment_status written when a service stage is paid.
SESSION_PAID_STATUS: dict[str, str] = {
    PaymentStage.DEPOSIT: "deposit_paid",
    PaymentStage.FINAL: "paid",
    PaymentStage.TIPS: "tips_paid",
}

QUOTABLE_STAGES: frozenset[str] = frozenset(SESSION_PAID_STATUS)


def normalize_stage(raw: str | None) -> str:
    return (raw or "").strip().lower()


def is_service_stage(stage: str) -> bool:
    return stage in SESSION_PAID_STATUS


# ═══════════════════════════════════════════════════════════════════════════════
# Intent
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IntentRequest:
    session_id: str
    payment_stage: str
    amount: Decimal | None = None
    package_code: str | None = None
    payment_method: str = "promptpay"

    @property
    def intent_key(self) -> str:
        return f"intent:{self.session_id}:{self.payment_stage}"


@dataclass(frozen=True, slots=True)
class PaymentDraft:
    """Pending payments row to ensure for a freshly issued reference."""

    payment_ref: str
    request: IntentRequest

    def fields(self) -> dict[str, Any]:
        req = self.request
        out: dict[str, Any] = {
            "payment_ref": self.payment_ref,
            "session_id": req.session_id,
            "payment_stage": req.payment_stage,
            "amount": money(req.amount) or 0,
            "currency": CURRENCY,
            "payment_status": "pending",
            "intent_status": "pending",
            "payment_method": req.payment_method,
            "notes": f"session_id={req.session_id}; stage={req.payment_stage}",
        }
        if req.package_code:
            out["package_code"] = req.package_code
        return out


@dataclass(frozen=True, slots=True)
class Intent:
    transaction_ref: str
    idempotent: bool
    payment_stage: str
    session_id: str
    intent_key: str
    package_code: str | None = None
    payment_record_id: str | None = None
    warning: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "transaction_ref": self.transaction_ref,
            "idempotent": self.idempotent,
            "payment_stage": self.payment_stage,
            "package_code": self.package_code,
            "session_id": self.session_id,
            "intent_key": self.intent_key,
            "payment_record_id": self.payment_record_id,
        }
        if self.warning is not None:
            out["warning"] = self.warning
            out["message"] = self.message
        return out


# ═══════════════════════════════════════════════════════════════════════════════
# Notify paid
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class NotifyPaidCommand:
    transaction_ref: str
    payment_stage: str | None = None
    session_id: str | None = None
    package_code: str | None = None
    member_email: str | None = None
    amount: Decimal | None = None
    provider: str = "promptpay"
    provider_txn_id: str | None = None
    receipt_url: str | None = None


class StepStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    ALREADY_EXISTS = "already_exists"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one best-effort write after a payment is marked paid."""

    status: StepStatus
    record_id: str | None = None
    reason: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is not StepStatus.FAILED

    @property
    def written(self) -> bool:
        return self.status in (StepStatus.CREATED, StepStatus.UPDATED)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "status": self.status.value}
        if self.record_id is not None:
            out["record_id"] = self.record_id
        if self.reason is not None:
            out["reason"] = self.reason
        out.update(self.detail)
        return out


@dataclass(frozen=True, slots=True)
class PaymentNotified:
    transaction_ref: str
    payment_stage: str
    payment_record_id: str
    already_paid: bool = False
    session_id: str | None = None
    package_code: str | None = None
    session_update: StepOutcome | None = None
    membership_ledger: StepOutcome | None = None
    points_ledger: StepOutcome | None = None

    @property
    def ledger_written(self) -> bool:
        return any(
            step is not None and step.status is StepStatus.CREATED
            for step in (self.membership_ledger, self.points_ledger)
        )

    @property
    def session_updated(self) -> bool:
        return self.session_update is not None and self.session_update.written

    def to_dict(self) -> dict[str, Any]:
        if self.already_paid:
            return {
                "transaction_ref": self.transaction_ref,
                "payment_stage": self.payment_stage,
                "payment_record_id": self.payment_record_id,
                "already_paid": True,
                "ledger_written": False,
            }

        def step(s: StepOutcome | None) -> dict[str, Any] | None:
            return s.to_dict() if s is not None else None

        return {
            "transaction_ref": self.transaction_ref,
            "payment_stage": self.payment_stage,
            "payment_record_id": self.payment_record_id,
            "already_paid": False,
            "ledger_written": self.ledger_written,
            "session_id": self.session_id,
            "package_code": self.package_code,
            "session_updated": self.session_updated,
            "session_update": step(self.session_update),
            "membership_ledger": step(self.membership_ledger),
            "points_ledger": step(self.points_ledger),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Session quotes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SessionQuote:
    session_id: str
    payment_stage: str
    amount_thb: Decimal
    session_amount_thb: Decimal
    deposit_expected_thb: Decimal
    deposit_paid_thb: Decimal
    intent: Intent | None = None
    notification: dict[str, Any] | None = None

    @property
    def action(self) -> str:
        return "intent_created" if self.intent is not None else "no_balance_due"

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "payment_stage": self.payment_stage,
            "action": self.action,
            "amount_thb": money(self.amount_thb),
            "session_amount_thb": money(self.session_amount_thb),
            "deposit_expected_thb": money(self.deposit_expected_thb),
            "deposit_paid_thb": money(self.deposit_paid_thb),
            "intent": self.intent.to_dict() if self.intent is not None else None,
            "notification": self.notification,
        }


@dataclass(frozen=True, slots=True)
class TipsPayment:
    record_id: str
    payment_ref: str
    amount: Decimal
    paid_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "payment_ref": self.payment_ref,
            "amount": money(self.amount),
            "paid_at": self.paid_at,
        }


@dataclass(frozen=True, slots=True)
class TipsSummary:
    session_id: str
    items: tuple[TipsPayment, ...] = ()

    @property
    def total(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal(0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "tips_paid_total": money(self.total),
            "tips_payments": [item.to_dict() for item in self.items],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Pay tokens
# ═══════════════════════════════════════════════════════════════════════════════

# Payload fields echoed back to the confirmation page.
CLAIM_FIELDS = (
    "package_code",
    "customer_display",
    "rules_customer_url",
    "model_confirm_url",
    "booking",
)


@dataclass(frozen=True, slots=True)
class PayTokenGrant:
    """token → payload, as cached under tok:{token}."""

    token: str
    payload: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class PayToken:
    session_id: str
    token: str
    confirm_payment_url: str
    payload: Mapping[str, Any]
    ttl_seconds: int
    cached: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "token": self.token,
            "confirm_payment_url": self.confirm_payment_url,
            "rules_customer_url": self.payload.get("rules_customer_url"),
            "model_confirm_url": self.payload.get("model_confirm_url"),
            "cache": {"ok": self.cached, "ttl_seconds": self.ttl_seconds},
        }


@dataclass(frozen=True, slots=True)
class PayTokenClaims:
    """
    What a verified token says.

    source: "cache" when the payload came from tok:{token}, "signature" when
    it was read from the token itself.
    """

    token: str
    payload: Mapping[str, Any]
    source: str

    @property
    def amount_thb(self) -> Any:
        amount = self.payload.get("amount_thb")
        return amount if amount is not None else self.payload.get("amount_total_thb")

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "session_id": self.payload.get("session_id"),
            "amount_thb": self.amount_thb,
            **{name: self.payload.get(name) for name in CLAIM_FIELDS},
            "source": self.source,
        }


__all__ = (
    "PAYMENTS_TABLE",
    "SESSIONS_TABLE",
    "PACKAGES_TABLE",
    "MEMBER_PACKAGES_TABLE",
    "POINTS_LEDGER_TABLE",
    "CURRENCY",
    "PaymentStage",
    "SESSION_PAID_STATUS",
    "QUOTABLE_STAGES",
    "normalize_stage",
    "is_service_stage",
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
    "CLAIM_FIELDS",
    "PayTokenGrant",
    "PayToken",
    "PayTokenClaims",
)
