"""
Payment intent ledger.

Two cached mappings back the protocol:

    intent:{session_id}:{stage}  →  transaction_ref     (intent TTL)
    payrec:{transaction_ref}     →  payments record id  (intent TTL)
    tok:{token}                  →  signed invoice payload (intent TTL)

notify_paid marks the payment paid exactly once and then writes the stage's
ledgers: the session status for service stages, or the member-package and
points entries for a membership purchase. Never both.
"""

from __future__ import annotations

import logging
import re
import secrets
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from kungfu import Result, Ok, Error

from jobledger import idempotency as I
from jobledger._types import Clock, isoformat, to_decimal, utcnow
from jobledger.config import CachePolicy, PayTokenSettings, PricingPolicy
from jobledger.errors import (
    AuthError,
    ConflictError,
    CoreError,
    Errors,
    UpstreamError,
    ValidationError,
    from_idempotency,
)
from jobledger.notify import Notifier
from jobledger.records import Record, RecordStore, find_one
from jobledger.payments._amounts import (
    award_points,
    deposit_charge,
    deposit_expected,
    final_due,
    money,
)
from jobledger.payments._tokens import read_token, sign_token
from jobledger.payments._types import (
    CURRENCY,
    MEMBER_PACKAGES_TABLE,
    PACKAGES_TABLE,
    PAYMENTS_TABLE,
    POINTS_LEDGER_TABLE,
    QUOTABLE_STAGES,
    SESSION_PAID_STATUS,
    SESSIONS_TABLE,
    Intent,
    IntentRequest,
    NotifyPaidCommand,
    PaymentDraft,
    PaymentNotified,
    PayToken,
    PayTokenClaims,
    PayTokenGrant,
    PaymentStage,
    SessionQuote,
    StepOutcome,
    StepStatus,
    TipsPayment,
    TipsSummary,
    is_service_stage,
    normalize_stage,
)

log = logging.getLogger("jobledger.payments")

_NOTE_FIELD = re.compile(r"(\w+)=([^;]*)")


def parse_notes(notes: str) -> dict[str, str]:
    """`session_id=s1; stage=deposit` → {"session_id": "s1", "stage": "deposit"}"""
    return {k: v.strip() for k, v in _NOTE_FIELD.findall(notes or "")}


def invoice_id(now: datetime) -> str:
    """INV-20250301-9F2C4A: issue date plus 3 random bytes in hex."""
    return f"INV-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


@dataclass
class PaymentService:
    records: RecordStore
    notifier: Notifier
    cache: I.StoreAny
    pricing: PricingPolicy = field(default_factory=PricingPolicy)
    cache_policy: CachePolicy = field(default_factory=CachePolicy)
    tokens: PayTokenSettings = field(default_factory=PayTokenSettings)
    clock: Clock = utcnow
    _intents: I.IdempotentExecutor[IntentRequest, str, CoreError] = field(init=False)
    _payment_records: I.IdempotentExecutor[PaymentDraft, str, CoreError] = field(init=False)
    _token_grants: I.IdempotentExecutor[PayTokenGrant, dict[str, Any], CoreError] = field(init=False)

    def __post_init__(self) -> None:
        policy = I.Policy().with_ttl(delta=self.cache_policy.intent_ttl).with_on_pending(I.WAIT)
        self._intents = (
            I.idempotent(self._issue_ref)
            .key(lambda req: req.intent_key)
            .store(self.cache)
            .policy(policy)
            .build()
        )
        self._payment_records = (
            I.idempotent(self._ensure_payment_record)
            .key(lambda draft: f"payrec:{draft.payment_ref}")
            .store(self.cache)
            .policy(policy)
            .build()
        )
        self._token_grants = (
            I.idempotent(self._grant_token)
            .key(lambda grant: f"tok:{grant.token}")
            .store(self.cache)
            .policy(policy)
            .build()
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Intents
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_or_get_intent(
        self,
        session_id: str,
        payment_stage: str,
        *,
        amount: Decimal | None = None,
        package_code: str | None = None,
        payment_method: str | None = None,
    ) -> Result[Intent, CoreError]:
        """
        One transaction reference per (session, stage) for the intent TTL.

        Note: A failed payments-record creation does not fail the call; the
        reference is returned with warning="record_create_failed" and the
        record is created on the next call.
        """
        req = IntentRequest(
            session_id=(session_id or "").strip(),
            payment_stage=normalize_stage(payment_stage),
            amount=amount,
            package_code=_clean(package_code),
            payment_method=_clean(payment_method) or "promptpay",
        )

        missing = [
            name
            for name, value in (("session_id", req.session_id), ("payment_stage", req.payment_stage))
            if not value
        ]
        if missing:
            return Error(Errors.missing(*missing))
        if req.payment_stage == PaymentStage.MEMBERSHIP and not req.package_code:
            return Error(
                ValidationError(
                    "missing_package_code",
                    "package_code is required for membership payments",
                    required=("package_code",),
                )
            )

        match await self._intents.run(req):
            case Ok(issued):
                ref: str = issued.value
                reused = issued.from_cache
            case Error(err):
                return Error(from_idempotency(err))

        intent = Intent(
            transaction_ref=ref,
            idempotent=reused,
            payment_stage=req.payment_stage,
            session_id=req.session_id,
            intent_key=req.intent_key,
            package_code=req.package_code,
        )

        match await self._payment_records.run(PaymentDraft(ref, req)):
            case Ok(stored):
                return Ok(replace(intent, payment_record_id=stored.value))
            case Error(err):
                core = from_idempotency(err)
                log.warning("payment record not created ref=%s: %s", ref, core.message)
                return Ok(replace(intent, warning="record_create_failed", message=core.message))

    async def _issue_ref(self, req: IntentRequest) -> Result[str, CoreError]:
        ref = str(uuid.uuid4())
        log.info("transaction ref issued key=%s ref=%s", req.intent_key, ref)
        return Ok(ref)

    async def _ensure_payment_record(self, draft: PaymentDraft) -> Result[str, CoreError]:
        match await find_one(self.records, PAYMENTS_TABLE, {"payment_ref": draft.payment_ref}):
            case Error(err):
                return Error(err)
            case Ok(None):
                pass
            case Ok(existing):
                return Ok(existing.id)

        match await self.records.create(PAYMENTS_TABLE, draft.fields()):
            case Ok(record):
                return Ok(record.id)
            case Error(ConflictError()):
                match await find_one(self.records, PAYMENTS_TABLE, {"payment_ref": draft.payment_ref}):
                    case Ok(None):
                        return Error(Errors.payment_not_found(draft.payment_ref))
                    case Ok(existing):
                        return Ok(existing.id)
                    case Error(err):
                        return Error(err)
            case Error(err):
                return Error(err)

    # ═══════════════════════════════════════════════════════════════════════════
    # Paid notification
    # ═══════════════════════════════════════════════════════════════════════════

    async def notify_paid(self, cmd: NotifyPaidCommand) -> Result[PaymentNotified, CoreError]:
        """
        Mark a payment paid and write the stage's ledgers.

        Repeating the call for an already-paid reference writes nothing and
        reports already_paid.
        """
        ref = (cmd.transaction_ref or "").strip()
        if not ref:
            return Error(Errors.missing("transaction_ref"))

        match await self._resolve_payment(ref):
            case Error(err):
                return Error(err)
            case Ok(payment):
                pass

        notes = parse_notes(payment.text("notes"))
        stage = (
            normalize_stage(cmd.payment_stage)
            or normalize_stage(payment.text("payment_stage"))
            or normalize_stage(notes.get("stage"))
        )

        if payment.text("payment_status").lower() == "paid":
            log.info("payment already paid ref=%s", ref)
            return Ok(PaymentNotified(ref, stage, payment.id, already_paid=True))

        session_id = (
            _clean(cmd.session_id) or payment.text("session_id") or notes.get("session_id") or None
        )
        package_code = _clean(cmd.package_code) or payment.text("package_code") or None
        amount = cmd.amount if cmd.amount is not None else to_decimal(payment.get("amount"))
        now = self.clock()

        paid_fields: dict[str, Any] = {
            "payment_status": "paid",
            "intent_status": "paid",
            "verification_status": "verified",
            "paid_at": isoformat(now),
        }
        if cmd.provider_txn_id:
            paid_fields["provider_txn_id"] = cmd.provider_txn_id
        if cmd.receipt_url:
            paid_fields["receipt_url"] = cmd.receipt_url

        match await self.records.update(PAYMENTS_TABLE, payment.id, paid_fields):
            case Error(err):
                log.error("payment update failed ref=%s: %s", ref, err.message)
                return Error(
                    UpstreamError("payment_update_failed", err.message, err.status, err.detail)
                )
            case Ok(_):
                log.info("payment marked paid ref=%s stage=%s", ref, stage)

        result = PaymentNotified(
            transaction_ref=ref,
            payment_stage=stage,
            payment_record_id=payment.id,
            session_id=session_id,
            package_code=package_code,
        )

        if is_service_stage(stage):
            return Ok(replace(result, session_update=await self._mark_session(ref, stage, session_id)))

        if stage == PaymentStage.MEMBERSHIP:
            member_email = _clean(cmd.member_email)
            return Ok(
                replace(
                    result,
                    membership_ledger=await self._write_member_package(
                        ref, member_email, package_code, amount, cmd.provider, now.date()
                    ),
                    points_ledger=await self._write_points(ref, member_email, session_id, amount),
                )
            )

        return Ok(result)

    async def _resolve_payment(self, ref: str) -> Result[Record, CoreError]:
        match await self.cache.get(f"payrec:{ref}"):
            case Ok(cached) if cached is not None and cached.value:
                match await self.records.get(PAYMENTS_TABLE, str(cached.value)):
                    case Ok(record) if record is not None:
                        return Ok(record)
                    case Ok(None):
                        log.warning("cached payment record missing ref=%s", ref)
                    case Error(err):
                        return Error(err)
            case Ok(_):
                pass
            case Error(err):
                log.warning("payment cache read failed ref=%s: %s", ref, err.message)

        match await find_one(self.records, PAYMENTS_TABLE, {"payment_ref": ref}):
            case Ok(None):
                return Error(Errors.payment_not_found(ref))
            case Ok(record):
                return Ok(record)
            case Error(err):
                return Error(err)

    async def _mark_session(self, ref: str, stage: str, session_id: str | None) -> StepOutcome:
        if not session_id:
            return StepOutcome(StepStatus.SKIPPED, reason="missing_session_id")

        match await find_one(self.records, SESSIONS_TABLE, {"session_id": session_id}):
            case Error(err):
                log.warning("session lookup failed session_id=%s: %s", session_id, err.message)
                return StepOutcome(StepStatus.FAILED, reason=err.code)
            case Ok(None):
                return StepOutcome(StepStatus.SKIPPED, reason="session_not_found")
            case Ok(session):
                pass

        status = SESSION_PAID_STATUS[stage]
        match await self.records.update(
            SESSIONS_TABLE, session.id, {"payment_status": status, "payment_ref": ref}
        ):
            case Ok(_):
                log.info("session payment_status=%s session_id=%s", status, session_id)
                return StepOutcome(StepStatus.UPDATED, session.id, detail={"payment_status": status})
            case Error(err):
                log.warning("session update failed session_id=%s: %s", session_id, err.message)
                return StepOutcome(StepStatus.FAILED, session.id, reason=err.code)

    async def _write_member_package(
        self,
        ref: str,
        member_email: str | None,
        package_code: str | None,
        amount: Decimal | None,
        provider: str,
        paid_on: date,
    ) -> StepOutcome:
        if not member_email or not package_code:
            return StepOutcome(StepStatus.SKIPPED, reason="missing_required")

        match await find_one(self.records, MEMBER_PACKAGES_TABLE, {"payment_ref": ref}):
            case Error(err):
                return StepOutcome(StepStatus.FAILED, reason=err.code)
            case Ok(None):
                pass
            case Ok(existing):
                return StepOutcome(StepStatus.ALREADY_EXISTS, existing.id)

        duration_days, tier = 0, None
        match await find_one(self.records, PACKAGES_TABLE, {"code": package_code}):
            case Ok(None):
                log.warning("package %s not found, zero-length membership", package_code)
            case Ok(package):
                duration_days = int(to_decimal(package.get("duration_days")) or 0)
                tier = package.text("tier") or None
            case Error(err):
                log.warning("package lookup failed code=%s: %s", package_code, err.message)

        start = paid_on
        end = start + timedelta(days=duration_days)
        fields: dict[str, Any] = {
            "member_email": member_email,
            "package_code": package_code,
            "amount": money(amount) or 0,
            "currency": CURRENCY,
            "status": "active",
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "payment_ref": ref,
            "provider": provider,
            "ledger_type": "purchase",
            "source": "payment_notify",
            "note": f"membership purchase {package_code}",
        }
        if tier:
            fields["tier"] = tier

        dates = {"start_date": start.isoformat(), "end_date": end.isoformat()}
        match await self.records.create(MEMBER_PACKAGES_TABLE, fields):
            case Ok(record):
                log.info("member package written ref=%s email=%s", ref, member_email)
                return StepOutcome(StepStatus.CREATED, record.id, detail=dates)
            case Error(ConflictError()):
                return StepOutcome(StepStatus.ALREADY_EXISTS, reason="unique_conflict")
            case Error(err):
                log.warning("member package write failed ref=%s: %s", ref, err.message)
                return StepOutcome(StepStatus.FAILED, reason=err.code)

    async def _write_points(
        self,
        ref: str,
        member_email: str | None,
        session_id: str | None,
        amount: Decimal | None,
    ) -> StepOutcome:
        points = award_points(amount or Decimal(0), self.pricing)
        if points <= 0:
            return StepOutcome(StepStatus.SKIPPED, reason="zero_points", detail={"points": 0})

        match await find_one(self.records, POINTS_LEDGER_TABLE, {"payment_ref": ref}):
            case Error(err):
                return StepOutcome(StepStatus.FAILED, reason=err.code)
            case Ok(None):
                pass
            case Ok(existing):
                return StepOutcome(StepStatus.ALREADY_EXISTS, existing.id)

        fields: dict[str, Any] = {
            "payment_ref": ref,
            "amount_thb": money(amount),
            "points": points,
            "rate_policy": f"{money(self.pricing.points_rate)}THB=1PT",
            "source": "payment_notify",
            "note": "membership purchase",
        }
        if member_email:
            fields["member_email"] = member_email
        if session_id:
            fields["session_id"] = session_id

        match await self.records.create(POINTS_LEDGER_TABLE, fields):
            case Ok(record):
                log.info("points ledger written ref=%s points=%d", ref, points)
                return StepOutcome(StepStatus.CREATED, record.id, detail={"points": points})
            case Error(ConflictError()):
                return StepOutcome(StepStatus.ALREADY_EXISTS, reason="unique_conflict")
            case Error(err):
                log.warning("points ledger write failed ref=%s: %s", ref, err.message)
                return StepOutcome(StepStatus.FAILED, reason=err.code)

    # ═══════════════════════════════════════════════════════════════════════════
    # Session quotes
    # ═══════════════════════════════════════════════════════════════════════════

    async def quote_session_payment(
        self,
        session_id: str,
        payment_stage: str,
        *,
        tips_amount: Decimal | None = None,
    ) -> Result[SessionQuote, CoreError]:
        """Amount due for a session stage, with an intent when anything is due."""
        session_id = (session_id or "").strip()
        stage = normalize_stage(payment_stage)
        if not session_id:
            return Error(Errors.missing("session_id"))
        if stage not in QUOTABLE_STAGES:
            return Error(
                ValidationError(
                    "invalid_payment_stage",
                    f"payment_stage must be one of {', '.join(sorted(QUOTABLE_STAGES))}",
                )
            )

        match await find_one(self.records, SESSIONS_TABLE, {"session_id": session_id}):
            case Error(err):
                return Error(err)
            case Ok(None):
                return Error(Errors.session_not_found(session_id))
            case Ok(session):
                pass

        session_amount = to_decimal(session.get("amount_thb")) or Decimal(0)
        if session_amount <= 0:
            return Error(
                ValidationError("invalid_session_amount", f"session {session_id} has no amount")
            )

        expected = deposit_expected(session_amount, self.pricing)
        paid_deposits = await self._paid_total(session_id, PaymentStage.DEPOSIT)

        match stage:
            case PaymentStage.DEPOSIT:
                due = deposit_charge(expected, paid_deposits)
            case PaymentStage.FINAL:
                due = final_due(session_amount, paid_deposits)
            case _:
                if tips_amount is None or tips_amount <= 0:
                    return Error(
                        ValidationError("invalid_tips_amount", "tips amount must be positive")
                    )
                due = tips_amount

        quote = SessionQuote(
            session_id=session_id,
            payment_stage=stage,
            amount_thb=due,
            session_amount_thb=session_amount,
            deposit_expected_thb=expected,
            deposit_paid_thb=paid_deposits,
        )
        if due <= 0:
            log.info("no balance due session_id=%s stage=%s", session_id, stage)
            return Ok(quote)

        match await self.create_or_get_intent(session_id, stage, amount=due):
            case Error(err):
                return Error(err)
            case Ok(intent):
                pass

        payload = {
            "flow": "payment_intent",
            "session_id": session_id,
            "payment_stage": stage,
            "amount_thb": money(due),
            "transaction_ref": intent.transaction_ref,
        }
        match await self.notifier.send(payload):
            case Ok(_):
                notification: dict[str, Any] = {"ok": True}
            case Error(err):
                log.warning("payment_intent notification failed: %s", err.code)
                notification = {"ok": False, "error": err.code}

        return Ok(replace(quote, intent=intent, notification=notification))

    async def tips_summary(self, session_id: str) -> Result[TipsSummary, CoreError]:
        session_id = (session_id or "").strip()
        if not session_id:
            return Error(Errors.missing("session_id"))

        match await self.records.find(
            PAYMENTS_TABLE,
            {"session_id": session_id, "payment_stage": PaymentStage.TIPS.value, "payment_status": "paid"},
            limit=100,
        ):
            case Error(err):
                return Error(err)
            case Ok(rows):
                items = tuple(
                    TipsPayment(
                        record_id=row.id,
                        payment_ref=row.text("payment_ref"),
                        amount=to_decimal(row.get("amount")) or Decimal(0),
                        paid_at=row.text("paid_at"),
                    )
                    for row in rows
                )
                return Ok(TipsSummary(session_id, items))

    async def _paid_total(self, session_id: str, stage: str) -> Decimal:
        """Sum of paid amounts for a session stage; 0 when the lookup fails."""
        match await self.records.find(
            PAYMENTS_TABLE,
            {"session_id": session_id, "payment_stage": stage, "payment_status": "paid"},
            limit=100,
        ):
            case Ok(rows):
                return sum(
                    (to_decimal(row.get("amount")) or Decimal(0) for row in rows), Decimal(0)
                )
            case Error(err):
                log.warning("paid total lookup failed session_id=%s: %s", session_id, err.message)
                return Decimal(0)

    # ═══════════════════════════════════════════════════════════════════════════
    # Pay tokens
    # ═══════════════════════════════════════════════════════════════════════════

    async def issue_pay_token(self, invoice: Mapping[str, Any]) -> Result[PayToken, CoreError]:
        """
        Sign an invoice into a pay token and cache token → payload.

        The payload is the invoice plus session_id (a fresh INV-YYYYMMDD-XXXXXX
        when absent), created_at and exp_ms (now + intent TTL).

        Note: A failed cache write still returns the token with cached=False;
        verification then falls back to the signature.
        """
        if not self.tokens.secret:
            return Error(AuthError("token_secret_missing", "pay tokens need a signing secret", 500))

        now = self.clock()
        ttl = self.cache_policy.intent_ttl
        session_id = str(invoice.get("session_id") or "").strip() or invoice_id(now)
        payload = {
            **invoice,
            "session_id": session_id,
            "created_at": isoformat(now),
            "exp_ms": int((now + ttl).timestamp() * 1000),
        }
        token = sign_token(payload, self.tokens.secret)

        match await self._token_grants.run(PayTokenGrant(token, payload)):
            case Ok(_):
                cached = True
            case Error(err):
                log.warning("pay token not cached session_id=%s: %s", session_id, err.message)
                cached = False

        log.info("pay token issued session_id=%s", session_id)
        return Ok(
            PayToken(
                session_id=session_id,
                token=token,
                confirm_payment_url=self.tokens.confirm_url(token),
                payload=payload,
                ttl_seconds=int(ttl.total_seconds()),
                cached=cached,
            )
        )

    async def _grant_token(self, grant: PayTokenGrant) -> Result[dict[str, Any], CoreError]:
        return Ok(dict(grant.payload))

    async def verify_pay_token(self, token: str) -> Result[PayTokenClaims, CoreError]:
        """
        Claims of a pay token: the cached payload first, then the signature.

        Note: Tokens whose cache entry is gone (restart, eviction, issued
        elsewhere) still verify on signature and expiry alone.
        """
        token = (token or "").strip()
        if not token:
            return Error(AuthError("missing_token", "token is required"))

        match await self.cache.get(f"tok:{token}"):
            case Ok(cached) if cached is not None and isinstance(cached.value, dict):
                return Ok(PayTokenClaims(token, cached.value, source="cache"))
            case Error(err):
                log.warning("pay token lookup failed: %s", err.message)
            case Ok(_):
                pass

        now_ms = int(self.clock().timestamp() * 1000)
        match read_token(token, self.tokens.secret, now_ms):
            case Ok(payload):
                return Ok(PayTokenClaims(token, payload, source="signature"))
            case Error(err):
                log.info("pay token rejected: %s", err.code)
                return Error(err)


__all__ = (
    "PaymentService",
    "parse_notes",
    "invoice_id",
)
