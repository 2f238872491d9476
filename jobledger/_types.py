"""
Core types for jobledger.

Project-wide clock and record-value helpers.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

# ═══════════════════════════════════════════════════════════════════════════════
# Clock
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], datetime]
"""Source of 'now'. Injected everywhere time matters so tests can freeze it."""


def utcnow() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(UTC)


def isoformat(ts: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z for UTC."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(UTC).replace(tzinfo=None)
    return ts.isoformat(timespec="milliseconds") + "Z"


# ═══════════════════════════════════════════════════════════════════════════════
# Record Values
# ═══════════════════════════════════════════════════════════════════════════════


def to_decimal(value: Any) -> Decimal | None:
    """Record-store number (int, float, str or empty) as Decimal; None when absent or unparseable."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Clock",
    "utcnow",
    "isoformat",
    "to_decimal",
)
