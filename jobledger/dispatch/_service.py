"""
Dispatch service — the job state machine.

apply_event is the only mutation of an existing job:

    replay? ──► find job ──► append event ──► resolve status ──► gate
                                                                   │
            cache result ◄── side effects ◄── single write ◄───────┘

The payment gate rejects `work_started` until a `final_payment_confirmed`
event exists; a rejected call persists nothing and notifies nobody.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from kungfu import Result, Ok, Error

from jobledger import idempotency as I
from jobledger._types import Clock, isoformat, utcnow
from jobledger.config import CachePolicy
from jobledger.errors import (
    ConflictError,
    CoreError,
    Errors,
    UpstreamError,
    ValidationError,
    from_idempotency,
)
from jobledger.notify import Notifier, Payload, RoomOpener
from jobledger.records import RecordStore, find_one
from jobledger.dispatch._events import Event
from jobledger.dispatch._job import JOBS_TABLE, MONEY_FIELDS, Job, JobDraft
from jobledger.dispatch._normalize import LIVE_CHAT_EVENT, normalize_event_name
from jobledger.dispatch._status import JobStatus, is_regression, parse_status

log = logging.getLogger("jobledger.dispatch")

# Extra notifications, keyed by normalized event name.
FOLLOW_UP_FLOWS: dict[str, str] = {
    JobStatus.NEARBY: "dispatch_meeting_point",
    JobStatus.ARRIVED: "dispatch_meeting_point",
    JobStatus.SEPARATED: "review_tip_request",
    JobStatus.REVIEW: "payout_notice",
    JobStatus.PAYOUT: "payout_notice",
}


# ═══════════════════════════════════════════════════════════════════════════════
# Command / Result
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ApplyEventCommand:
    job_id: str
    event_raw: str
    status: str | None = None
    by: str | None = None
    data: Any = None
    idempotency_key: str | None = None

    def fingerprint(self) -> str:
        """Stable hash of everything that changes the outcome."""
        body = json.dumps(
            [
                self.job_id,
                normalize_event_name(self.event_raw),
                self.status,
                self.by,
                self.data,
            ],
            sort_keys=True,
            default=str,
            ensure_ascii=False,
        )
        return hashlib.sha256(body.encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class SideEffect:
    """Outcome of one best-effort notification."""

    kind: str
    flow: str
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "flow": self.flow, "ok": self.ok}
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SideEffect:
        return cls(
            kind=raw["kind"], flow=raw["flow"], ok=bool(raw["ok"]), error=raw.get("error")
        )


@dataclass(frozen=True, slots=True)
class EventApplied:
    job_id: str
    event: str
    status: str
    updated_at: str
    side_effects: tuple[SideEffect, ...] = ()
    realtime_open_result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "event": self.event,
            "status": self.status,
            "updated_at": self.updated_at,
            "side_effects": [s.to_dict() for s in self.side_effects],
            "realtime_open_result": self.realtime_open_result,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EventApplied:
        return cls(
            job_id=raw["job_id"],
            event=raw["event"],
            status=raw["status"],
            updated_at=raw["updated_at"],
            side_effects=tuple(SideEffect.from_dict(s) for s in raw.get("side_effects", [])),
            realtime_open_result=raw.get("realtime_open_result"),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class DispatchService:
    records: RecordStore
    notifier: Notifier
    rooms: RoomOpener
    cache: I.StoreAny
    cache_policy: CachePolicy = field(default_factory=CachePolicy)
    clock: Clock = utcnow
    _executor: I.IdempotentExecutor[ApplyEventCommand, dict[str, Any], CoreError] = field(
        init=False
    )

    def __post_init__(self) -> None:
        self._executor = (
            I.idempotent(self._apply)
            .key(lambda cmd: f"event:{cmd.idempotency_key}")
            .fingerprint(ApplyEventCommand.fingerprint)
            .store(self.cache)
            .policy(
                I.Policy()
                .with_ttl(delta=self.cache_policy.event_ttl)
                .with_on_pending(I.FAIL)
            )
            .build()
        )

    # ── reads ───────────────────────────────────────────────────────────────

    async def get_job(self, job_id: str) -> Result[Job, CoreError]:
        if not job_id.strip():
            return Error(Errors.missing("job_id"))
        match await find_one(self.records, JOBS_TABLE, {"job_id": job_id.strip()}):
            case Ok(None):
                return Error(Errors.job_not_found(job_id))
            case Ok(record):
                return Ok(Job.from_record(record))
            case Error(err):
                return Error(err)

    # ── create ──────────────────────────────────────────────────────────────

    async def create_job(self, draft: JobDraft) -> Result[Job, CoreError]:
        """Create a job in status `confirmed` with an empty event log."""
        job_id = draft.job_id.strip() or f"job_{uuid.uuid4().hex[:12]}"

        match await find_one(self.records, JOBS_TABLE, {"job_id": job_id}):
            case Error(err):
                return Error(err)
            case Ok(None):
                pass
            case Ok(_):
                return Error(ConflictError("job_exists", f"job {job_id} already exists"))

        fields: dict[str, Any] = {
            "job_id": job_id,
            "cid": draft.cid,
            "session_id": draft.session_id,
            "model_code": draft.model_code,
            "customer_name": draft.customer_name,
            "schedule_start_at": draft.schedule_start_at,
            "meeting_point_text": draft.meeting_point_text,
            "city": draft.city,
            "status": JobStatus.CONFIRMED.value,
            "last_update_at": isoformat(self.clock()),
            "events_json": "[]",
        }
        for name in MONEY_FIELDS:
            value: Decimal | None = getattr(draft, name)
            if value is not None:
                fields[name] = float(value)

        match await self.records.create(JOBS_TABLE, fields):
            case Ok(record):
                log.info("job created job_id=%s", job_id)
                return Ok(Job.from_record(record))
            case Error(ConflictError()):
                return Error(ConflictError("job_exists", f"job {job_id} already exists"))
            case Error(err):
                return Error(err)

    # ── apply event ─────────────────────────────────────────────────────────

    async def apply_event(
        self,
        job_id: str,
        event_raw: str,
        *,
        status: str | None = None,
        by: str | None = None,
        data: Any = None,
        idempotency_key: str | None = None,
    ) -> Result[EventApplied, CoreError]:
        """
        Append an event to a job and move its status.

        With an idempotency_key the first complete result is cached for the
        event TTL; repeats replay it verbatim without touching the job.
        Reusing a key with a different body is a ConflictError.
        """
        cmd = ApplyEventCommand(
            job_id=(job_id or "").strip(),
            event_raw=event_raw or "",
            status=status.strip() if status and status.strip() else None,
            by=by.strip() if by and by.strip() else None,
            data=data,
            idempotency_key=(idempotency_key or "").strip() or None,
        )

        required = {"job_id": cmd.job_id, "event": normalize_event_name(cmd.event_raw)}
        missing = [name for name, value in required.items() if not value]
        if missing:
            return Error(Errors.missing(*missing))

        if cmd.idempotency_key is None:
            outcome = await self._apply(cmd)
        else:
            match await self._executor.run(cmd):
                case Ok(cached):
                    if cached.from_cache:
                        log.info("event replayed key=%s job_id=%s", cmd.idempotency_key, cmd.job_id)
                    outcome = Ok(cached.value)
                case Error(err):
                    outcome = Error(from_idempotency(err))

        match outcome:
            case Ok(value):
                return Ok(EventApplied.from_dict(value))
            case Error(err):
                return Error(err)

    async def _apply(self, cmd: ApplyEventCommand) -> Result[dict[str, Any], CoreError]:
        event_name = normalize_event_name(cmd.event_raw)

        explicit: JobStatus | None = None
        if cmd.status is not None:
            explicit = parse_status(cmd.status)
            if explicit is None:
                return Error(
                    ValidationError("invalid_status", f"unknown status: {cmd.status}")
                )

        match await self.get_job(cmd.job_id):
            case Error(err):
                return Error(err)
            case Ok(job):
                pass

        now = isoformat(self.clock())
        events = job.events.append(
            Event(
                ts=now,
                event=event_name,
                by=cmd.by or "system",
                event_raw=cmd.event_raw,
                data=cmd.data,
            )
        )

        next_status = self._resolve_status(job, event_name, explicit)

        if next_status == JobStatus.WORK_STARTED and not events.contains(
            JobStatus.FINAL_PAYMENT_CONFIRMED
        ):
            log.info("payment gate rejected work_started job_id=%s", job.job_id)
            return Error(
                ConflictError(
                    "final_payment_required",
                    "final payment required before work can start",
                )
            )

        update = {
            "status": next_status,
            "last_update_at": now,
            "events_json": events.serialize(),
        }
        match await self.records.update(JOBS_TABLE, job.record_id, update):
            case Error(err):
                log.error("job update failed job_id=%s: %s", job.job_id, err.message)
                return Error(UpstreamError("job_update_failed", err.message, err.status, err.detail))
            case Ok(_):
                log.info(
                    "event applied job_id=%s event=%s status=%s->%s",
                    job.job_id, event_name, job.status, next_status,
                )

        side_effects, realtime = await self._side_effects(job, event_name, next_status, now)

        return Ok(
            EventApplied(
                job_id=job.job_id,
                event=event_name,
                status=next_status,
                updated_at=now,
                side_effects=side_effects,
                realtime_open_result=realtime,
            ).to_dict()
        )

    @staticmethod
    def _resolve_status(job: Job, event_name: str, explicit: JobStatus | None) -> str:
        """
        explicit override > event that names a status > previous status.

        An inferred status never moves the job backwards.
        """
        if explicit is not None:
            return explicit.value
        inferred = parse_status(event_name)
        if inferred is None or is_regression(job.status, inferred):
            return job.status
        return inferred.value

    # ── side effects ────────────────────────────────────────────────────────

    async def _side_effects(
        self, job: Job, event_name: str, status: str, ts: str
    ) -> tuple[tuple[SideEffect, ...], dict[str, Any] | None]:
        base: dict[str, Any] = {"event": event_name, "status": status, **job.context(), "ts": ts}

        effects = [await self._notify("notify", {"flow": "dispatch", **base})]

        if flow := FOLLOW_UP_FLOWS.get(event_name):
            effects.append(await self._notify("notify", {"flow": flow, **base, **self._extra(flow, job)}))

        realtime: dict[str, Any] | None = None
        if event_name == LIVE_CHAT_EVENT:
            match await self.rooms.open_room(job.context()):
                case Ok(opened):
                    realtime = {"ok": True, **opened}
                    effects.append(SideEffect("realtime", "room_open", True))
                case Error(err):
                    log.warning("realtime room open failed job_id=%s: %s", job.job_id, err.code)
                    realtime = {"ok": False, "error": err.code, "message": err.message}
                    effects.append(SideEffect("realtime", "room_open", False, err.code))

        return tuple(effects), realtime

    async def _notify(self, kind: str, payload: Payload) -> SideEffect:
        flow = str(payload["flow"])
        match await self.notifier.send(payload):
            case Ok(_):
                return SideEffect(kind, flow, True)
            case Error(err):
                log.warning("notification failed flow=%s: %s", flow, err.code)
                return SideEffect(kind, flow, False, err.code)

    @staticmethod
    def _extra(flow: str, job: Job) -> dict[str, Any]:
        match flow:
            case "dispatch_meeting_point":
                return {
                    "balance_thb": float(job.balance_thb) if job.balance_thb is not None else None,
                    "show_balance_qr": True,
                }
            case "review_tip_request":
                return {"customer_name": job.customer_name}
            case "payout_notice":
                return {
                    "total_thb": float(job.total_thb) if job.total_thb is not None else None,
                }
            case _:
                return {}


__all__ = (
    "FOLLOW_UP_FLOWS",
    "ApplyEventCommand",
    "SideEffect",
    "EventApplied",
    "DispatchService",
)
