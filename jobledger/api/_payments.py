from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from jobledger import ops as O
from jobledger.payments import (
    Intent,
    NotifyPaidCommand,
    PaymentNotified,
    PayToken,
    PayTokenClaims,
    SessionQuote,
    TipsSummary,
)


class IntentIn(BaseModel):
    session_id: str = ""
    payment_stage: str = ""
    amount: Decimal | None = None
    package_code: str | None = None
    payment_method: str | None = None
    turnstile_token: str | None = None

    def to_domain(self) -> O.CreateIntent:
        return O.CreateIntent(
            session_id=self.session_id,
            payment_stage=self.payment_stage,
            amount=self.amount,
            package_code=self.package_code,
            payment_method=self.payment_method,
        )


class IntentOut(BaseModel):
    transaction_ref: str
    idempotent: bool
    payment_stage: str
    package_code: str | None = None
    session_id: str
    intent_key: str
    payment_record_id: str | None = None
    warning: str | None = None
    message: str | None = None

    @classmethod
    def from_domain(cls, dom: Intent) -> "IntentOut":
        return cls.model_validate(dom.to_dict())


class NotifyPaidIn(BaseModel):
    transaction_ref: str = ""
    # Older payment pages send the reference as payment_ref.
    payment_ref: str = ""
    payment_stage: str | None = None
    session_id: str | None = None
    package_code: str | None = None
    member_email: str | None = None
    amount: Decimal | None = None
    provider: str = "promptpay"
    provider_txn_id: str | None = None
    receipt_url: str | None = None

    def to_domain(self) -> O.NotifyPaid:
        return O.NotifyPaid(
            NotifyPaidCommand(
                transaction_ref=self.transaction_ref or self.payment_ref,
                payment_stage=self.payment_stage,
                session_id=self.session_id,
                package_code=self.package_code,
                member_email=self.member_email,
                amount=self.amount,
                provider=self.provider,
                provider_txn_id=self.provider_txn_id,
                receipt_url=self.receipt_url,
            )
        )


class PaymentNotifiedOut(BaseModel):
    transaction_ref: str
    payment_stage: str
    payment_record_id: str
    already_paid: bool
    ledger_written: bool
    session_id: str | None = None
    package_code: str | None = None
    session_updated: bool = False
    session_update: dict[str, Any] | None = None
    membership_ledger: dict[str, Any] | None = None
    points_ledger: dict[str, Any] | None = None

    @classmethod
    def from_domain(cls, dom: PaymentNotified) -> "PaymentNotifiedOut":
        return cls.model_validate(dom.to_dict())


class SessionPaymentIn(BaseModel):
    session_id: str = ""
    payment_stage: str = ""
    tips_amount: Decimal | None = Field(default=None, alias="amount_thb")

    model_config = {"populate_by_name": True}

    def to_domain(self) -> O.QuoteSessionPayment:
        return O.QuoteSessionPayment(
            session_id=self.session_id,
            payment_stage=self.payment_stage,
            tips_amount=self.tips_amount,
        )


class SessionQuoteOut(BaseModel):
    session_id: str
    payment_stage: str
    action: str
    amount_thb: int | float
    session_amount_thb: int | float
    deposit_expected_thb: int | float
    deposit_paid_thb: int | float
    intent: dict[str, Any] | None = None
    notification: dict[str, Any] | None = None

    @classmethod
    def from_domain(cls, dom: SessionQuote) -> "SessionQuoteOut":
        return cls.model_validate(dom.to_dict())


class TipsSummaryIn(BaseModel):
    session_id: str = ""

    def to_domain(self) -> O.GetTipsSummary:
        return O.GetTipsSummary(self.session_id)


class TipsSummaryOut(BaseModel):
    session_id: str
    tips_paid_total: int | float
    tips_payments: list[dict[str, Any]]

    @classmethod
    def from_domain(cls, dom: TipsSummary) -> "TipsSummaryOut":
        return cls.model_validate(dom.to_dict())


class PayTokenIn(BaseModel):
    """Invoice fields are free-form; every one of them is signed into the token."""

    model_config = {"extra": "allow"}

    session_id: str = ""

    def to_domain(self) -> O.IssuePayToken:
        return O.IssuePayToken(self.model_dump(mode="json"))


class PayTokenOut(BaseModel):
    session_id: str
    token: str
    confirm_payment_url: str
    rules_customer_url: Any = None
    model_confirm_url: Any = None
    cache: dict[str, Any]

    @classmethod
    def from_domain(cls, dom: PayToken) -> "PayTokenOut":
        return cls.model_validate(dom.to_dict())


class PayVerifyIn(BaseModel):
    token: str = ""

    def to_domain(self) -> O.VerifyPayToken:
        return O.VerifyPayToken(self.token)


class PayVerifyOut(BaseModel):
    token: str
    session_id: Any = None
    amount_thb: Any = None
    package_code: Any = None
    customer_display: Any = None
    rules_customer_url: Any = None
    model_confirm_url: Any = None
    booking: Any = None
    source: str

    @classmethod
    def from_domain(cls, dom: PayTokenClaims) -> "PayVerifyOut":
        return cls.model_validate(dom.to_dict())
