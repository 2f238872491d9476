"""
Record store contract — named tables, equality filters, opaque record ids.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from kungfu import Result, Ok, Error

from jobledger.errors import ConflictError, UpstreamError


# ═══════════════════════════════════════════════════════════════════════════════
# Record
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Record:
    """One row. `fields` is keyed by logical field name."""

    id: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        value = self.fields.get(name)
        return default if value is None else value

    def text(self, name: str) -> str:
        value = self.fields.get(name)
        return "" if value is None else str(value).strip()


# ═══════════════════════════════════════════════════════════════════════════════
# Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class RecordStore(Protocol):
    """
    What the core needs from the spreadsheet-style store.

    Every call is one network round-trip; callers decide whether a
    failure is fatal or best-effort.
    """

    async def find(
        self,
        table: str,
        where: Mapping[str, Any],
        *,
        limit: int = 1,
    ) -> Result[list[Record], UpstreamError]:
        """Records whose fields equal every value in `where`."""
        ...

    async def get(self, table: str, record_id: str) -> Result[Record | None, UpstreamError]:
        ...

    async def create(
        self, table: str, fields: Mapping[str, Any]
    ) -> Result[Record, UpstreamError | ConflictError]:
        """ConflictError when a uniqueness rule of the table rejects the row."""
        ...

    async def update(
        self, table: str, record_id: str, fields: Mapping[str, Any]
    ) -> Result[Record, UpstreamError]:
        """Partial update; untouched fields keep their values."""
        ...


async def find_one(
    store: RecordStore, table: str, where: Mapping[str, Any]
) -> Result[Record | None, UpstreamError]:
    """First match or None."""
    match await store.find(table, where, limit=1):
        case Ok(records):
            return Ok(records[0] if records else None)
        case Error(err):
            return Error(err)


__all__ = ("Record", "RecordStore", "find_one")
