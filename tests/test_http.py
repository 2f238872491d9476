from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

import pytest
from fastapi.testclient import TestClient
from kungfu import Result

from jobledger import idempotency as I
from jobledger.app import create_app
from jobledger.config import Settings
from jobledger.errors import UpstreamError
from jobledger.records import MemoryRecordStore, Record

from conftest import (
    CONFIRM_KEY,
    FrozenClock,
    RecordingNotifier,
    RecordingRooms,
    StubVerifier,
    seed_job,
)

AUTH = {"x-confirm-key": CONFIRM_KEY}
BOOKING_ORIGIN = {"origin": "https://book.example.com"}


def make_client(
    settings: Settings,
    records: MemoryRecordStore,
    notifier: RecordingNotifier,
    rooms: RecordingRooms,
    cache: I.MemoryStore[Any],
    clock: FrozenClock,
    verifier: StubVerifier | None = None,
) -> TestClient:
    app = create_app(
        settings,
        records=records,
        notifier=notifier,
        rooms=rooms,
        cache=cache,
        verifier=verifier or StubVerifier(),
        clock=clock,
    )
    return TestClient(app)


@pytest.fixture
def client(
    settings: Settings,
    records: MemoryRecordStore,
    notifier: RecordingNotifier,
    rooms: RecordingRooms,
    cache: I.MemoryStore[Any],
    clock: FrozenClock,
) -> Iterator[TestClient]:
    with make_client(settings, records, notifier, rooms, cache, clock) as c:
        yield c


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["service"] == "jobledger"
    assert body["integrations"]["airtable"] is False
    assert body["integrations"]["turnstile"] is True


# ═══════════════════════════════════════════════════════════════════════════════
# Jobs
# ═══════════════════════════════════════════════════════════════════════════════


def test_event_requires_confirm_key(client: TestClient, records: MemoryRecordStore) -> None:
    seed_job(records)
    response = client.post("/v1/jobs/events", json={"job_id": "J1", "event": "arrived"})
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
    assert records.calls == []


def test_payment_gate_over_http(client: TestClient, records: MemoryRecordStore) -> None:
    seed_job(records, status="met_customer")

    blocked = client.post("/v1/jobs/events", json={"job_id": "J1", "event": "work_started"}, headers=AUTH)
    assert blocked.status_code == 409
    assert blocked.json() == {
        "ok": False,
        "error": "final_payment_required",
        "message": "final payment required before work can start",
    }

    paid = client.post(
        "/v1/jobs/events", json={"job_id": "J1", "event": "final_payment_confirmed"}, headers=AUTH
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "final_payment_confirmed"

    started = client.post("/v1/jobs/events", json={"job_id": "J1", "event": "work_started"}, headers=AUTH)
    assert started.status_code == 200
    body = started.json()
    assert body["ok"] is True
    assert body["status"] == "work_started"
    assert body["updated_at"] == "2025-03-01T09:30:00.000Z"
    assert body["side_effects"] == [{"kind": "notify", "flow": "dispatch", "ok": True}]


def test_replayed_event(client: TestClient, records: MemoryRecordStore, notifier: RecordingNotifier) -> None:
    seed_job(records)
    request = {"job_id": "J1", "event": "T-15min open live chat", "idempotency_key": "abc"}

    first = client.post("/v1/jobs/events", json=request, headers=AUTH)
    second = client.post("/v1/jobs/events", json=request, headers=AUTH)

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert first.json()["realtime_open_result"]["room"] == "room-J1"
    assert notifier.flows() == ["dispatch"]

    reused = client.post("/v1/jobs/events", json={**request, "event": "arrived"}, headers=AUTH)
    assert reused.status_code == 409
    assert reused.json()["error"] == "idempotency_key_reused"


def test_event_errors(client: TestClient, records: MemoryRecordStore) -> None:
    seed_job(records)

    missing = client.post("/v1/jobs/events", json={"job_id": "J1"}, headers=AUTH)
    assert missing.status_code == 422
    assert missing.json()["error"] == "missing_required_fields"
    assert missing.json()["required"] == ["event"]

    unknown = client.post("/v1/jobs/events", json={"job_id": "J404", "event": "arrived"}, headers=AUTH)
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "job_not_found"

    bad_status = client.post(
        "/v1/jobs/events", json={"job_id": "J1", "event": "x", "status": "flying"}, headers=AUTH
    )
    assert bad_status.status_code == 422
    assert bad_status.json()["error"] == "invalid_status"


def test_malformed_bodies(client: TestClient) -> None:
    broken = client.post(
        "/v1/jobs/events",
        content=b"{not json",
        headers={**AUTH, "content-type": "application/json"},
    )
    assert broken.status_code == 400
    assert broken.json()["error"] == "invalid_json"

    not_object = client.post("/v1/jobs/events", json=["J1"], headers=AUTH)
    assert not_object.status_code == 400

    wrong_type = client.post("/v1/jobs/events", json={"job_id": ["J1"], "event": "x"}, headers=AUTH)
    assert wrong_type.status_code == 422
    body = wrong_type.json()
    assert body["error"] == "validation_error"
    assert body["fields"][0]["loc"] == "job_id"


def test_create_job(client: TestClient) -> None:
    draft = {"job_id": "J9", "cid": "C1", "total_thb": 12345, "balance_thb": "8345"}

    created = client.post("/v1/jobs", json=draft, headers=AUTH)
    assert created.status_code == 200
    job = created.json()["job"]
    assert job["status"] == "confirmed"
    assert job["total_thb"] == 12345
    assert job["events"] == []

    duplicate = client.post("/v1/jobs", json=draft, headers=AUTH)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "job_exists"


def test_unexpected_exception_is_a_500(
    settings: Settings,
    notifier: RecordingNotifier,
    rooms: RecordingRooms,
    cache: I.MemoryStore[Any],
    clock: FrozenClock,
) -> None:
    class ExplodingStore(MemoryRecordStore):
        async def find(
            self, table: str, where: Mapping[str, Any], *, limit: int = 1
        ) -> Result[list[Record], UpstreamError]:
            raise RuntimeError("driver crashed")

    with make_client(settings, ExplodingStore(), notifier, rooms, cache, clock) as c:
        response = c.post("/v1/jobs/events", json={"job_id": "J1", "event": "arrived"}, headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "server_error", "message": "internal error"}


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


def test_public_intent(client: TestClient, records: MemoryRecordStore) -> None:
    request = {"session_id": "S1", "payment_stage": "deposit", "amount": 4000}

    first = client.post("/v1/payments/intent", json=request, headers=BOOKING_ORIGIN)
    second = client.post("/v1/payments/intent", json=request, headers=BOOKING_ORIGIN)

    assert first.status_code == 200
    assert first.headers["access-control-allow-origin"] == "https://book.example.com"
    assert first.json()["transaction_ref"] == second.json()["transaction_ref"]
    assert second.json()["idempotent"] is True
    assert len(records.rows("payments")) == 1


def test_foreign_origin_rejected(client: TestClient, records: MemoryRecordStore) -> None:
    response = client.post(
        "/v1/payments/intent",
        json={"session_id": "S1", "payment_stage": "deposit"},
        headers={"origin": "https://evil.example"},
    )
    assert response.status_code == 403
    assert response.json()["error"] == "origin_not_allowed"
    assert records.rows("payments") == []


def test_failed_bot_check(
    settings: Settings,
    records: MemoryRecordStore,
    notifier: RecordingNotifier,
    rooms: RecordingRooms,
    cache: I.MemoryStore[Any],
    clock: FrozenClock,
) -> None:
    verifier = StubVerifier(answer=False)
    with make_client(settings, records, notifier, rooms, cache, clock, verifier) as c:
        response = c.post(
            "/v1/payments/intent",
            json={"session_id": "S1", "payment_stage": "deposit", "turnstile_token": "bad"},
        )

    assert response.status_code == 403
    assert response.json()["error"] == "turnstile_failed"
    assert verifier.tokens == ["bad"]
    assert records.rows("payments") == []


def test_notify_paid_twice(client: TestClient, records: MemoryRecordStore) -> None:
    records.seed("sessions", {"session_id": "S1", "amount_thb": 12345})
    intent = client.post(
        "/v1/payments/intent", json={"session_id": "S1", "payment_stage": "final", "amount": 8345}
    ).json()

    first = client.post(
        "/v1/payments/notify", json={"payment_ref": intent["transaction_ref"]}, headers=AUTH
    )
    second = client.post(
        "/v1/payments/notify", json={"transaction_ref": intent["transaction_ref"]}, headers=AUTH
    )

    assert first.status_code == 200
    assert first.json()["already_paid"] is False
    assert first.json()["session_updated"] is True
    assert first.json()["session_update"]["status"] == "updated"
    assert second.json()["already_paid"] is True
    assert second.json()["ledger_written"] is False


def test_notify_unknown_reference(client: TestClient) -> None:
    response = client.post("/v1/payments/notify", json={"transaction_ref": "nope"}, headers=AUTH)
    assert response.status_code == 404
    assert response.json()["error"] == "payment_not_found"


def test_session_quote_and_tips(client: TestClient, records: MemoryRecordStore) -> None:
    records.seed("sessions", {"session_id": "S1", "amount_thb": 12345})

    deposit = client.post(
        "/v1/sessions/payment/intent", json={"session_id": "S1", "payment_stage": "deposit"}, headers=AUTH
    )
    assert deposit.status_code == 200
    assert deposit.json()["amount_thb"] == 4000
    assert deposit.json()["action"] == "intent_created"

    tips = client.post(
        "/v1/sessions/payment/intent",
        json={"session_id": "S1", "payment_stage": "tips", "amount_thb": 300},
        headers=AUTH,
    )
    tip_ref = tips.json()["intent"]["transaction_ref"]
    client.post("/v1/payments/notify", json={"transaction_ref": tip_ref, "amount": 300}, headers=AUTH)

    summary = client.post("/v1/sessions/tips/summary", json={"session_id": "S1"}, headers=AUTH)
    assert summary.status_code == 200
    assert summary.json()["tips_paid_total"] == 300
    assert [p["payment_ref"] for p in summary.json()["tips_payments"]] == [tip_ref]


def test_quote_rejections(client: TestClient) -> None:
    response = client.post(
        "/v1/sessions/payment/intent", json={"session_id": "S1", "payment_stage": "membership"}, headers=AUTH
    )
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_payment_stage"


# ═══════════════════════════════════════════════════════════════════════════════
# Pay tokens
# ═══════════════════════════════════════════════════════════════════════════════


def test_pay_token_round_trip(client: TestClient) -> None:
    invoice = {
        "amount_thb": 4000,
        "package_code": "P1",
        "booking": {"model_code": "M7", "hours": 2},
        "rules_customer_url": "https://book.example.com/rules",
    }

    issued = client.post("/v1/pay/token", json=invoice, headers=AUTH)
    assert issued.status_code == 200
    body = issued.json()
    assert body["ok"] is True
    assert body["session_id"].startswith("INV-20250301-")
    assert body["rules_customer_url"] == "https://book.example.com/rules"
    assert body["cache"]["ok"] is True

    verified = client.post("/v1/pay/verify", json={"token": body["token"]}, headers=BOOKING_ORIGIN)
    assert verified.status_code == 200
    claims = verified.json()
    assert claims["session_id"] == body["session_id"]
    assert claims["amount_thb"] == 4000
    assert claims["booking"] == {"model_code": "M7", "hours": 2}
    assert claims["source"] == "cache"


def test_pay_token_requires_confirm_key(client: TestClient) -> None:
    response = client.post("/v1/pay/token", json={"amount_thb": 1})
    assert response.status_code == 401


def test_pay_verify_rejections(client: TestClient) -> None:
    bad = client.post("/v1/pay/verify", json={"token": "v1.e30.nope"}, headers=BOOKING_ORIGIN)
    assert bad.status_code == 401
    assert bad.json() == {"ok": False, "error": "invalid_signature", "message": "token signature does not match"}

    foreign = client.post(
        "/v1/pay/verify", json={"token": "v1.e30.nope"}, headers={"origin": "https://evil.example"}
    )
    assert foreign.status_code == 403
