from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from kungfu import Result, Ok, Error

from jobledger import idempotency as I
from jobledger.config import GuardSettings, PayTokenSettings, Settings
from jobledger.dispatch import DispatchService
from jobledger.errors import UpstreamError
from jobledger.notify import Payload
from jobledger.payments import PaymentService
from jobledger.records import MemoryRecordStore

CONFIRM_KEY = "test-confirm-key"
PAY_TOKENS = PayTokenSettings(secret=CONFIRM_KEY, web_base_url="https://book.example.com")


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 1, 9, 30, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failing = False

    def flows(self) -> list[str]:
        return [str(p["flow"]) for p in self.sent]

    async def send(self, payload: Payload) -> Result[dict[str, Any], UpstreamError]:
        self.sent.append(dict(payload))
        if self.failing:
            return Error(UpstreamError("notify_failed", "chat api returned 500", status=500))
        return Ok({"message_id": len(self.sent)})


class RecordingRooms:
    def __init__(self) -> None:
        self.opened: list[dict[str, Any]] = []
        self.failing = False

    async def open_room(self, payload: Payload) -> Result[dict[str, Any], UpstreamError]:
        self.opened.append(dict(payload))
        if self.failing:
            return Error(UpstreamError("realtime_failed", "worker returned 503", status=503))
        return Ok({"room": f"room-{payload['job_id']}", "live_customer_url": "https://rt/c"})


class StubVerifier:
    def __init__(self, answer: bool = True, configured: bool = True) -> None:
        self.answer = answer
        self._configured = configured
        self.tokens: list[str] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def verify(self, token: str, remote_ip: str | None = None) -> Result[bool, UpstreamError]:
        self.tokens.append(token)
        return Ok(self.answer)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def records() -> MemoryRecordStore:
    return MemoryRecordStore(
        unique={"member_packages": ("payment_ref",), "points_ledger": ("payment_ref",)}
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def rooms() -> RecordingRooms:
    return RecordingRooms()


@pytest.fixture
def cache(clock: FrozenClock) -> I.MemoryStore[Any]:
    return I.MemoryStore(clock)


@pytest.fixture
def dispatch(
    records: MemoryRecordStore,
    notifier: RecordingNotifier,
    rooms: RecordingRooms,
    cache: I.MemoryStore[Any],
    clock: FrozenClock,
) -> DispatchService:
    return DispatchService(records=records, notifier=notifier, rooms=rooms, cache=cache, clock=clock)


@pytest.fixture
def payments(
    records: MemoryRecordStore,
    notifier: RecordingNotifier,
    cache: I.MemoryStore[Any],
    clock: FrozenClock,
) -> PaymentService:
    return PaymentService(
        records=records, notifier=notifier, cache=cache, tokens=PAY_TOKENS, clock=clock
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        guards=GuardSettings(
            confirm_key=CONFIRM_KEY,
            allowed_origins=("https://book.example.com",),
            turnstile_secret="ts-secret",
        ),
        pay_tokens=PAY_TOKENS,
    )


def seed_job(records: MemoryRecordStore, job_id: str = "J1", **fields: Any) -> None:
    records.seed(
        "jobs",
        {
            "job_id": job_id,
            "cid": "C9",
            "session_id": "S1",
            "model_code": "M7",
            "customer_name": "Khun A",
            "schedule_start_at": "2025-03-01T12:00:00Z",
            "meeting_point_text": "Lobby",
            "city": "Bangkok",
            "balance_thb": 8345,
            "total_thb": 12345,
            "status": "confirmed",
            "events_json": "[]",
            **fields,
        },
    )


def ok[T](result: Result[T, Any]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(err):
            pytest.fail(f"expected Ok, got Error({err!r})")


def err[E](result: Result[Any, E]) -> E:
    match result:
        case Error(error):
            return error
        case Ok(value):
            pytest.fail(f"expected Error, got Ok({value!r})")
