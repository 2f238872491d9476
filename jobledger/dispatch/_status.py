"""
Job statuses and their canonical ordering.
"""

from __future__ import annotations

from enum import StrEnum


class JobStatus(StrEnum):
    """Lifecycle of a job, in canonical order."""

    CONFIRMED = "confirmed"
    REMINDER = "reminder"
    EN_ROUTE = "en_route"
    NEARBY = "nearby"
    ARRIVED = "arrived"
    MET_CUSTOMER = "met_customer"
    FINAL_PAYMENT_PENDING = "final_payment_pending"
    FINAL_PAYMENT_CONFIRMED = "final_payment_confirmed"
    WORK_STARTED = "work_started"
    WORK_FINISHED = "work_finished"
    SEPARATED = "separated"
    REVIEW = "review"
    PAYOUT = "payout"
    CLOSED = "closed"


CANONICAL_ORDER: tuple[JobStatus, ...] = tuple(JobStatus)

_RANK = {status: i for i, status in enumerate(CANONICAL_ORDER)}


def parse_status(value: str | None) -> JobStatus | None:
    """Canonical status for `value`, or None if it is not a status name."""
    if not value:
        return None
    try:
        return JobStatus(value.strip().lower())
    except ValueError:
        return None


def rank(status: JobStatus) -> int:
    return _RANK[status]


def is_regression(current: str | None, candidate: JobStatus) -> bool:
    """True when `candidate` comes strictly before the known `current` status."""
    known = parse_status(current)
    return known is not None and rank(candidate) < rank(known)


__all__ = (
    "JobStatus",
    "CANONICAL_ORDER",
    "parse_status",
    "rank",
    "is_regression",
)
