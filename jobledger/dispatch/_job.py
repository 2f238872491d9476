"""
Job — one booked engagement, as read from the `jobs` table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from jobledger._types import to_decimal
from jobledger.dispatch._events import EventLog
from jobledger.records import Record

JOBS_TABLE = "jobs"

# Fields copied verbatim from the job into every dispatch notification.
CONTEXT_FIELDS: tuple[str, ...] = (
    "cid",
    "session_id",
    "model_code",
    "schedule_start_at",
    "meeting_point_text",
    "city",
)

MONEY_FIELDS: tuple[str, ...] = (
    "duration_hr",
    "total_thb",
    "deposit_thb",
    "balance_thb",
    "transport_fee_thb",
)


@dataclass(frozen=True, slots=True)
class JobDraft:
    """Input of create_job. job_id is assigned when empty."""

    job_id: str = ""
    cid: str = ""
    session_id: str = ""
    model_code: str = ""
    customer_name: str = ""
    schedule_start_at: str = ""
    meeting_point_text: str = ""
    city: str = ""
    duration_hr: Decimal | None = None
    total_thb: Decimal | None = None
    deposit_thb: Decimal | None = None
    balance_thb: Decimal | None = None
    transport_fee_thb: Decimal | None = None


@dataclass(frozen=True, slots=True)
class Job:
    record_id: str
    job_id: str
    status: str
    last_update_at: str = ""
    cid: str = ""
    session_id: str = ""
    model_code: str = ""
    customer_name: str = ""
    schedule_start_at: str = ""
    meeting_point_text: str = ""
    city: str = ""
    duration_hr: Decimal | None = None
    total_thb: Decimal | None = None
    deposit_thb: Decimal | None = None
    balance_thb: Decimal | None = None
    transport_fee_thb: Decimal | None = None
    events: EventLog = field(default_factory=EventLog)

    @classmethod
    def from_record(cls, record: Record) -> Job:
        return cls(
            record_id=record.id,
            job_id=record.text("job_id"),
            status=record.text("status"),
            last_update_at=record.text("last_update_at"),
            cid=record.text("cid"),
            session_id=record.text("session_id"),
            model_code=record.text("model_code"),
            customer_name=record.text("customer_name"),
            schedule_start_at=record.text("schedule_start_at"),
            meeting_point_text=record.text("meeting_point_text"),
            city=record.text("city"),
            duration_hr=to_decimal(record.get("duration_hr")),
            total_thb=to_decimal(record.get("total_thb")),
            deposit_thb=to_decimal(record.get("deposit_thb")),
            balance_thb=to_decimal(record.get("balance_thb")),
            transport_fee_thb=to_decimal(record.get("transport_fee_thb")),
            events=EventLog.parse(record.get("events_json")),
        )

    def context(self) -> dict[str, str]:
        """Identifying fields shared by every outbound payload about this job."""
        return {"job_id": self.job_id, **{name: getattr(self, name) for name in CONTEXT_FIELDS}}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "job_id": self.job_id,
            "status": self.status,
            "last_update_at": self.last_update_at,
            "customer_name": self.customer_name,
            **{name: getattr(self, name) for name in CONTEXT_FIELDS},
        }
        for name in MONEY_FIELDS:
            value = getattr(self, name)
            out[name] = float(value) if value is not None else None
        out["events"] = [e.to_dict() for e in self.events]
        return out


__all__ = (
    "JOBS_TABLE",
    "CONTEXT_FIELDS",
    "MONEY_FIELDS",
    "JobDraft",
    "Job",
)
