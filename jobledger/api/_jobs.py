from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from jobledger import ops as O
from jobledger.dispatch import EventApplied, Job, JobDraft


class CreateJobIn(BaseModel):
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

    def to_domain(self) -> O.CreateJob:
        return O.CreateJob(JobDraft(**self.model_dump()))


class JobOut(BaseModel):
    job: dict[str, Any]

    @classmethod
    def from_domain(cls, dom: Job) -> "JobOut":
        return cls(job=dom.to_dict())


class ApplyEventIn(BaseModel):
    job_id: str = ""
    event: str = ""
    status: str | None = None
    by: str | None = None
    data: Any = None
    idempotency_key: str | None = None
    turnstile_token: str | None = None

    def to_domain(self) -> O.ApplyEvent:
        return O.ApplyEvent(
            job_id=self.job_id,
            event=self.event,
            status=self.status,
            by=self.by,
            data=self.data,
            idempotency_key=self.idempotency_key,
        )


class EventAppliedOut(BaseModel):
    job_id: str
    event: str
    status: str
    updated_at: str
    side_effects: list[dict[str, Any]]
    realtime_open_result: dict[str, Any] | None = None

    @classmethod
    def from_domain(cls, dom: EventApplied) -> "EventAppliedOut":
        return cls.model_validate(dom.to_dict())
