from __future__ import annotations

import json
from decimal import Decimal

import pytest

from jobledger.dispatch import DispatchService, JobDraft, LIVE_CHAT_EVENT
from jobledger.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from jobledger.records import MemoryRecordStore

from conftest import RecordingNotifier, RecordingRooms, err, ok, seed_job


def stored_job(records: MemoryRecordStore, job_id: str = "J1") -> dict:
    [row] = [r for r in records.rows("jobs") if r.fields["job_id"] == job_id]
    return dict(row.fields)


def stored_events(records: MemoryRecordStore, job_id: str = "J1") -> list[dict]:
    return json.loads(stored_job(records, job_id)["events_json"])


# ═══════════════════════════════════════════════════════════════════════════════
# Validation & lookup
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_missing_fields(dispatch: DispatchService) -> None:
    failure = err(await dispatch.apply_event("", "   "))
    assert isinstance(failure, ValidationError)
    assert failure.code == "missing_required_fields"
    assert failure.required == ("job_id", "event")


@pytest.mark.asyncio
async def test_unknown_job(dispatch: DispatchService) -> None:
    failure = err(await dispatch.apply_event("NOPE", "arrived"))
    assert isinstance(failure, NotFoundError)
    assert failure.code == "job_not_found"


@pytest.mark.asyncio
async def test_invalid_explicit_status(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records)
    failure = err(await dispatch.apply_event("J1", "note", status="teleported"))
    assert isinstance(failure, ValidationError)
    assert failure.code == "invalid_status"
    assert stored_events(records) == []


# ═══════════════════════════════════════════════════════════════════════════════
# Status resolution
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_event_naming_a_status_moves_the_job(
    dispatch: DispatchService, records: MemoryRecordStore
) -> None:
    seed_job(records)
    applied = ok(await dispatch.apply_event("J1", "  En Route ", by="driver", data={"eta": 20}))

    assert applied.status == "en_route"
    assert applied.event == "en_route"
    job = stored_job(records)
    assert job["status"] == "en_route"
    assert job["last_update_at"] == "2025-03-01T09:30:00.000Z"
    [event] = stored_events(records)
    assert event == {
        "ts": "2025-03-01T09:30:00.000Z",
        "event": "en_route",
        "by": "driver",
        "event_raw": "  En Route ",
        "data": {"eta": 20},
    }


@pytest.mark.asyncio
async def test_free_text_event_keeps_status(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records, status="arrived")
    applied = ok(await dispatch.apply_event("J1", "customer late"))
    assert applied.status == "arrived"
    assert stored_events(records)[0]["by"] == "system"


@pytest.mark.asyncio
async def test_inferred_status_never_regresses(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records, status="met_customer")
    applied = ok(await dispatch.apply_event("J1", "arrived"))
    assert applied.status == "met_customer"
    assert len(stored_events(records)) == 1


@pytest.mark.asyncio
async def test_explicit_status_overrides(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records, status="met_customer")
    applied = ok(await dispatch.apply_event("J1", "correction", status="Arrived"))
    assert applied.status == "arrived"


@pytest.mark.asyncio
async def test_corrupt_event_log_is_treated_as_empty(
    dispatch: DispatchService, records: MemoryRecordStore
) -> None:
    seed_job(records, events_json="{broken")
    ok(await dispatch.apply_event("J1", "reminder"))
    assert [e["event"] for e in stored_events(records)] == ["reminder"]


# ═══════════════════════════════════════════════════════════════════════════════
# Payment gate
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_gate_rejects_work_started_without_payment(
    dispatch: DispatchService, records: MemoryRecordStore, notifier: RecordingNotifier
) -> None:
    seed_job(records, status="met_customer")
    before = stored_job(records)

    failure = err(await dispatch.apply_event("J1", "work_started"))

    assert isinstance(failure, ConflictError)
    assert failure.code == "final_payment_required"
    assert stored_job(records) == before
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_gate_applies_to_explicit_status(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records, status="met_customer")
    failure = err(await dispatch.apply_event("J1", "go", status="work_started"))
    assert failure.code == "final_payment_required"


@pytest.mark.asyncio
async def test_gate_satisfied_by_payment_event(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records, status="met_customer")

    ok(await dispatch.apply_event("J1", "Final Payment Confirmed"))
    applied = ok(await dispatch.apply_event("J1", "work_started"))

    assert applied.status == "work_started"
    assert [e["event"] for e in stored_events(records)] == [
        "final_payment_confirmed",
        "work_started",
    ]


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_same_key_replays_without_reapplying(
    dispatch: DispatchService, records: MemoryRecordStore, notifier: RecordingNotifier
) -> None:
    seed_job(records)

    first = ok(await dispatch.apply_event("J1", "arrived", idempotency_key="k-1"))
    sent_after_first = len(notifier.sent)
    second = ok(await dispatch.apply_event("J1", "arrived", idempotency_key="k-1"))

    assert first == second
    assert len(stored_events(records)) == 1
    assert len(notifier.sent) == sent_after_first


@pytest.mark.asyncio
async def test_key_reuse_with_other_body_conflicts(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records)
    ok(await dispatch.apply_event("J1", "arrived", idempotency_key="k-1"))

    failure = err(await dispatch.apply_event("J1", "met_customer", idempotency_key="k-1"))

    assert isinstance(failure, ConflictError)
    assert failure.code == "idempotency_key_reused"
    assert len(stored_events(records)) == 1


@pytest.mark.asyncio
async def test_gate_rejection_is_not_cached(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records, status="met_customer")

    rejected = err(await dispatch.apply_event("J1", "work_started", idempotency_key="start"))
    assert rejected.code == "final_payment_required"
    ok(await dispatch.apply_event("J1", "final_payment_confirmed", idempotency_key="paid"))
    applied = ok(await dispatch.apply_event("J1", "work_started", idempotency_key="start"))

    assert applied.status == "work_started"


@pytest.mark.asyncio
async def test_without_key_every_call_appends(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records)
    ok(await dispatch.apply_event("J1", "note"))
    ok(await dispatch.apply_event("J1", "note"))
    assert len(stored_events(records)) == 2


# ═══════════════════════════════════════════════════════════════════════════════
# Side effects
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_dispatch_notification_payload(
    dispatch: DispatchService, records: MemoryRecordStore, notifier: RecordingNotifier
) -> None:
    seed_job(records)
    ok(await dispatch.apply_event("J1", "reminder"))

    [payload] = notifier.sent
    assert payload == {
        "flow": "dispatch",
        "event": "reminder",
        "status": "reminder",
        "job_id": "J1",
        "cid": "C9",
        "session_id": "S1",
        "model_code": "M7",
        "schedule_start_at": "2025-03-01T12:00:00Z",
        "meeting_point_text": "Lobby",
        "city": "Bangkok",
        "ts": "2025-03-01T09:30:00.000Z",
    }


@pytest.mark.parametrize(
    ("event", "follow_up"),
    [
        ("nearby", "dispatch_meeting_point"),
        ("arrived", "dispatch_meeting_point"),
        ("separated", "review_tip_request"),
        ("review", "payout_notice"),
        ("payout", "payout_notice"),
    ],
)
@pytest.mark.asyncio
async def test_follow_up_notifications(
    dispatch: DispatchService,
    records: MemoryRecordStore,
    notifier: RecordingNotifier,
    event: str,
    follow_up: str,
) -> None:
    seed_job(records, status="confirmed")
    applied = ok(await dispatch.apply_event("J1", event, status=event))

    assert notifier.flows() == ["dispatch", follow_up]
    assert [s.flow for s in applied.side_effects] == ["dispatch", follow_up]


@pytest.mark.asyncio
async def test_meeting_point_carries_balance(
    dispatch: DispatchService, records: MemoryRecordStore, notifier: RecordingNotifier
) -> None:
    seed_job(records)
    ok(await dispatch.apply_event("J1", "arrived"))
    meeting = notifier.sent[1]
    assert meeting["balance_thb"] == 8345
    assert meeting["show_balance_qr"] is True


@pytest.mark.asyncio
async def test_live_chat_opens_room_once(
    dispatch: DispatchService, records: MemoryRecordStore, rooms: RecordingRooms
) -> None:
    seed_job(records)

    applied = ok(await dispatch.apply_event("J1", "T-15min เปิด ไลฟ์แชท"))

    assert applied.event == LIVE_CHAT_EVENT
    assert applied.realtime_open_result is not None
    assert applied.realtime_open_result["ok"] is True
    assert rooms.opened == [
        {
            "job_id": "J1",
            "cid": "C9",
            "session_id": "S1",
            "model_code": "M7",
            "schedule_start_at": "2025-03-01T12:00:00Z",
            "meeting_point_text": "Lobby",
            "city": "Bangkok",
        }
    ]


@pytest.mark.asyncio
async def test_other_events_do_not_open_rooms(
    dispatch: DispatchService, records: MemoryRecordStore, rooms: RecordingRooms
) -> None:
    seed_job(records)
    applied = ok(await dispatch.apply_event("J1", "open live chat"))
    assert rooms.opened == []
    assert applied.realtime_open_result is None


@pytest.mark.asyncio
async def test_failed_side_effects_do_not_fail_the_event(
    dispatch: DispatchService,
    records: MemoryRecordStore,
    notifier: RecordingNotifier,
    rooms: RecordingRooms,
) -> None:
    seed_job(records)
    notifier.failing = True
    rooms.failing = True

    applied = ok(await dispatch.apply_event("J1", "t15 livechat"))

    assert stored_job(records)["events_json"] != "[]"
    assert [(s.kind, s.ok) for s in applied.side_effects] == [("notify", False), ("realtime", False)]
    assert applied.realtime_open_result == {
        "ok": False,
        "error": "realtime_failed",
        "message": "worker returned 503",
    }


@pytest.mark.asyncio
async def test_update_failure_is_fatal(
    dispatch: DispatchService, records: MemoryRecordStore, notifier: RecordingNotifier
) -> None:
    seed_job(records)
    records.fail("jobs", "update")

    failure = err(await dispatch.apply_event("J1", "arrived"))

    assert isinstance(failure, UpstreamError)
    assert failure.code == "job_update_failed"
    assert notifier.sent == []


# ═══════════════════════════════════════════════════════════════════════════════
# Create / get
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_job(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    job = ok(await dispatch.create_job(JobDraft(job_id="J5", cid="C1", total_thb=Decimal("12345"))))

    assert job.status == "confirmed"
    assert len(job.events) == 0
    stored = stored_job(records, "J5")
    assert stored["events_json"] == "[]"
    assert stored["total_thb"] == 12345.0

    duplicate = err(await dispatch.create_job(JobDraft(job_id="J5")))
    assert duplicate.code == "job_exists"


@pytest.mark.asyncio
async def test_create_job_assigns_id(dispatch: DispatchService) -> None:
    job = ok(await dispatch.create_job(JobDraft(cid="C1")))
    assert job.job_id.startswith("job_")


@pytest.mark.asyncio
async def test_get_job_parses_events(dispatch: DispatchService, records: MemoryRecordStore) -> None:
    seed_job(records)
    ok(await dispatch.apply_event("J1", "reminder"))
    job = ok(await dispatch.get_job("J1"))
    assert job.status == "reminder"
    assert [e.event for e in job.events] == ["reminder"]
