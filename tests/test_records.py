from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from jobledger import idempotency as I
from jobledger.config import AirtableSettings
from jobledger.dispatch import DispatchService
from jobledger.errors import ConflictError, UpstreamError
from jobledger.records import AirtableRecordStore, MemoryRecordStore, find_one
from jobledger.records._airtable import equality_formula, formula_literal

from conftest import FrozenClock, RecordingNotifier, RecordingRooms, err, ok


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_find_matches_every_field(self) -> None:
        store = MemoryRecordStore()
        store.seed("jobs", {"job_id": "J1", "city": "Bangkok"})
        store.seed("jobs", {"job_id": "J2", "city": "Bangkok"})

        assert len(ok(await store.find("jobs", {"city": "Bangkok"}, limit=10))) == 2
        [found] = ok(await store.find("jobs", {"city": "Bangkok", "job_id": "J2"}))
        assert found.text("job_id") == "J2"
        assert ok(await find_one(store, "jobs", {"job_id": "J9"})) is None

    @pytest.mark.asyncio
    async def test_unique_fields(self) -> None:
        store = MemoryRecordStore(unique={"points_ledger": ("payment_ref",)})
        ok(await store.create("points_ledger", {"payment_ref": "r1", "points": 1}))
        failure = err(await store.create("points_ledger", {"payment_ref": "r1", "points": 1}))
        assert isinstance(failure, ConflictError)

    @pytest.mark.asyncio
    async def test_update_is_partial(self) -> None:
        store = MemoryRecordStore()
        record = store.seed("jobs", {"job_id": "J1", "status": "confirmed"})
        updated = ok(await store.update("jobs", record.id, {"status": "arrived"}))
        assert dict(updated.fields) == {"job_id": "J1", "status": "arrived"}

    @pytest.mark.asyncio
    async def test_failure_injection(self) -> None:
        store = MemoryRecordStore()
        store.fail("jobs", "find", times=2)
        assert isinstance(err(await store.find("jobs", {})), UpstreamError)
        assert isinstance(err(await store.find("jobs", {})), UpstreamError)
        assert ok(await store.find("jobs", {})) == []


# ═══════════════════════════════════════════════════════════════════════════════
# Airtable
# ═══════════════════════════════════════════════════════════════════════════════


def test_formula_quoting() -> None:
    assert formula_literal('say "hi"') == '"say \\"hi\\""'
    assert equality_formula({"a": "1"}) == '{a}="1"'
    assert equality_formula({"a": "1", "b": 2}) == 'AND({a}="1",{b}="2")'


class FakeAirtable:
    """
    Rows keyed by field id. Like Airtable, answers with field names unless
    the request asks for returnFieldsByFieldId.
    """

    def __init__(self, names: dict[str, str]) -> None:
        self.names = names
        self.rows: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []

    def seed(self, record_id: str, fields: dict[str, Any]) -> None:
        self.rows[record_id] = dict(fields)

    def _answer(self, record_id: str, by_id: bool) -> dict[str, Any]:
        row = self.rows[record_id]
        fields = dict(row) if by_id else {self.names.get(k, k): v for k, v in row.items()}
        return {"id": record_id, "fields": fields}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.split("/")[3:]
        if request.method == "GET":
            by_id = request.url.params.get("returnFieldsByFieldId") == "true"
            if len(parts) == 2:
                if parts[1] not in self.rows:
                    return httpx.Response(404, json={"error": "NOT_FOUND"})
                return httpx.Response(200, json=self._answer(parts[1], by_id))
            return httpx.Response(200, json={"records": [self._answer(rid, by_id) for rid in self.rows]})

        body = json.loads(request.content)
        by_id = body.get("returnFieldsByFieldId") is True
        if request.method == "POST":
            record_id = f"rec{len(self.rows) + 1}"
            self.rows[record_id] = {}
        else:
            record_id = parts[1]
        self.rows[record_id].update(body["fields"])
        return httpx.Response(200, json=self._answer(record_id, by_id))


def airtable(handler) -> AirtableRecordStore:
    settings = AirtableSettings(
        api_key="key",
        base_id="app1",
        api_url="https://airtable.test/v0",
        tables={"payments": "tblPay"},
        field_map={"payments": {"payment_ref": "fldRef"}},
    )
    return AirtableRecordStore(settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestAirtableStore:
    @pytest.mark.asyncio
    async def test_find_reads_fields_by_id(self) -> None:
        fake = FakeAirtable({"fldRef": "Payment Ref"})
        fake.seed("rec1", {"fldRef": "T1", "amount": 4000})

        [record] = ok(await airtable(fake).find("payments", {"payment_ref": "T1"}))

        assert record.id == "rec1"
        assert dict(record.fields) == {"payment_ref": "T1", "amount": 4000}
        [request] = fake.requests
        assert request.url.path == "/v0/app1/tblPay"
        assert request.url.params["filterByFormula"] == '{fldRef}="T1"'
        assert request.url.params["maxRecords"] == "1"
        assert request.url.params["returnFieldsByFieldId"] == "true"
        assert request.headers["authorization"] == "Bearer key"

    @pytest.mark.asyncio
    async def test_get_reads_fields_by_id(self) -> None:
        fake = FakeAirtable({"fldRef": "Payment Ref"})
        fake.seed("rec1", {"fldRef": "T1"})

        record = ok(await airtable(fake).get("payments", "rec1"))

        assert record is not None
        assert record.get("payment_ref") == "T1"

    @pytest.mark.asyncio
    async def test_unmapped_table_reads_by_name(self) -> None:
        fake = FakeAirtable({})
        fake.seed("rec1", {"job_id": "J1"})

        [record] = ok(await airtable(fake).find("jobs", {"job_id": "J1"}))

        assert record.get("job_id") == "J1"
        assert "returnFieldsByFieldId" not in fake.requests[0].url.params

    @pytest.mark.asyncio
    async def test_create_sends_mapped_fields(self) -> None:
        fake = FakeAirtable({"fldRef": "Payment Ref"})

        record = ok(await airtable(fake).create("payments", {"payment_ref": "T2", "amount": 1}))

        assert json.loads(fake.requests[0].content) == {
            "fields": {"fldRef": "T2", "amount": 1},
            "typecast": True,
            "returnFieldsByFieldId": True,
        }
        assert record.get("payment_ref") == "T2"

    @pytest.mark.asyncio
    async def test_update_maps_response_back(self) -> None:
        fake = FakeAirtable({"fldRef": "Payment Ref"})
        fake.seed("rec1", {"fldRef": "T1", "amount": 1})

        record = ok(await airtable(fake).update("payments", "rec1", {"amount": 2}))

        assert dict(record.fields) == {"payment_ref": "T1", "amount": 2}

    @pytest.mark.asyncio
    async def test_job_read_through_field_ids(
        self, notifier: RecordingNotifier, rooms: RecordingRooms, cache: I.MemoryStore[Any], clock: FrozenClock
    ) -> None:
        fake = FakeAirtable({"fldJob": "Job ID", "fldStatus": "Status", "fldEvents": "Events JSON"})
        fake.seed(
            "recJ1",
            {
                "fldJob": "J1",
                "fldStatus": "confirmed",
                "fldEvents": '[{"ts":"2025-03-01T09:00:00.000Z","event":"confirmed"}]',
            },
        )
        settings = AirtableSettings(
            api_key="key",
            base_id="app1",
            api_url="https://airtable.test/v0",
            tables={"jobs": "tblJobs"},
            field_map={"jobs": {"job_id": "fldJob", "status": "fldStatus", "events_json": "fldEvents"}},
        )
        store = AirtableRecordStore(settings, httpx.AsyncClient(transport=httpx.MockTransport(fake)))
        dispatch = DispatchService(records=store, notifier=notifier, rooms=rooms, cache=cache, clock=clock)

        job = ok(await dispatch.get_job("J1"))

        assert job.job_id == "J1"
        assert job.status == "confirmed"
        assert len(job.events) == 1

    @pytest.mark.asyncio
    async def test_duplicate_rejection_is_a_conflict(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"error": {"message": "Duplicate payment_ref"}})

        failure = err(await airtable(handler).create("payments", {"payment_ref": "T2"}))
        assert isinstance(failure, ConflictError)

    @pytest.mark.asyncio
    async def test_missing_record_reads_as_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "NOT_FOUND"})

        assert ok(await airtable(handler).get("payments", "recX")) is None

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="")

        failure = err(await airtable(handler).update("payments", "rec1", {"amount": 1}))
        assert failure.code == "record_store_failed"
        assert failure.status == 503

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        failure = err(await airtable(handler).find("payments", {}))
        assert failure.code == "record_store_unreachable"

    @pytest.mark.asyncio
    async def test_unconfigured(self) -> None:
        store = AirtableRecordStore(AirtableSettings())
        failure = err(await store.find("payments", {}))
        assert failure.code == "record_store_not_configured"
        await store.aclose()
