"""
HTTP route table.

    GET  /health                       —                   Health
    POST /v1/jobs                      secret              CreateJob
    POST /v1/jobs/events               secret, bot         ApplyEvent
    POST /v1/payments/intent           origin, bot         CreateIntent
    POST /v1/payments/notify           secret              NotifyPaid
    POST /v1/sessions/payment/intent   secret              QuoteSessionPayment
    POST /v1/sessions/tips/summary     secret              GetTipsSummary
    POST /v1/pay/token                 secret              IssuePayToken
    POST /v1/pay/verify                origin              VerifyPayToken
"""

from jobledger import wire as W
from jobledger.config import GuardSettings
from jobledger.ops import Runner
from jobledger.api._health import HealthIn, HealthOut
from jobledger.api._jobs import ApplyEventIn, CreateJobIn, EventAppliedOut, JobOut
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


def endpoints(runner: Runner, guards: GuardSettings, verifier: W.Verifier) -> W.Endpoint:
    secret = W.SharedSecret(guards.confirm_key)
    origin = W.OriginAllowList(guards.allowed_origins)
    bot = W.BotCheck(verifier)

    def route(method: W.Method, path: str, *checks: W.Guard) -> W.HTTPRouteTrigger:
        return W.HTTPRouteTrigger(method, path, guards=checks)

    return (
        W.endpoint(runner)
        .expose(route("GET", "/health"), W.RequestResponseCodec(HealthIn, HealthOut))
        .expose(route("POST", "/v1/jobs", secret), W.RequestResponseCodec(CreateJobIn, JobOut))
        .expose(
            route("POST", "/v1/jobs/events", secret, bot),
            W.RequestResponseCodec(ApplyEventIn, EventAppliedOut),
        )
        .expose(
            route("POST", "/v1/payments/intent", origin, bot),
            W.RequestResponseCodec(IntentIn, IntentOut),
        )
        .expose(
            route("POST", "/v1/payments/notify", secret),
            W.RequestResponseCodec(NotifyPaidIn, PaymentNotifiedOut),
        )
        .expose(
            route("POST", "/v1/sessions/payment/intent", secret),
            W.RequestResponseCodec(SessionPaymentIn, SessionQuoteOut),
        )
        .expose(
            route("POST", "/v1/sessions/tips/summary", secret),
            W.RequestResponseCodec(TipsSummaryIn, TipsSummaryOut),
        )
        .expose(
            route("POST", "/v1/pay/token", secret),
            W.RequestResponseCodec(PayTokenIn, PayTokenOut),
        )
        .expose(
            route("POST", "/v1/pay/verify", origin),
            W.RequestResponseCodec(PayVerifyIn, PayVerifyOut),
        )
    )
