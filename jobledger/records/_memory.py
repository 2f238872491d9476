"""
In-memory record store — tests and local demos.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Mapping
from typing import Any

from kungfu import Result, Ok, Error

from jobledger.errors import ConflictError, UpstreamError
from jobledger.records._types import Record


class MemoryRecordStore:
    """
    Dict-backed RecordStore.

    unique: table → field names that must be unique within the table
    (mimics a ledger table with a unique payment_ref).

    Failure injection:
        store.fail("sessions", "update")   # next update on sessions fails
        store.fail("payments", "create", times=None)  # fails until healed
    """

    def __init__(self, unique: Mapping[str, tuple[str, ...]] | None = None) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}
        self._unique = dict(unique or {})
        self._ids = itertools.count(1)
        self._failures: dict[tuple[str, str], int | None] = {}
        self._lock = asyncio.Lock()
        self.calls: list[tuple[str, str]] = []

    # ── test helpers ────────────────────────────────────────────────────────

    def fail(self, table: str, op: str, times: int | None = 1) -> None:
        self._failures[(table, op)] = times

    def heal(self) -> None:
        self._failures.clear()

    def rows(self, table: str) -> list[Record]:
        return [Record(rid, dict(f)) for rid, f in self._tables.get(table, {}).items()]

    def seed(self, table: str, fields: Mapping[str, Any]) -> Record:
        record_id = f"rec{next(self._ids):06d}"
        self._tables.setdefault(table, {})[record_id] = dict(fields)
        return Record(record_id, dict(fields))

    # ── RecordStore ─────────────────────────────────────────────────────────

    def _check(self, table: str, op: str) -> UpstreamError | None:
        self.calls.append((op, table))
        key = (table, op)
        if key not in self._failures:
            return None
        remaining = self._failures[key]
        if remaining is not None:
            if remaining <= 1:
                del self._failures[key]
            else:
                self._failures[key] = remaining - 1
        return UpstreamError("record_store_failed", f"{op} {table} failed", status=503)

    async def find(
        self,
        table: str,
        where: Mapping[str, Any],
        *,
        limit: int = 1,
    ) -> Result[list[Record], UpstreamError]:
        async with self._lock:
            if err := self._check(table, "find"):
                return Error(err)
            found = [
                Record(rid, dict(fields))
                for rid, fields in self._tables.get(table, {}).items()
                if _matches(fields, where)
            ]
            return Ok(found[:limit])

    async def get(self, table: str, record_id: str) -> Result[Record | None, UpstreamError]:
        async with self._lock:
            if err := self._check(table, "get"):
                return Error(err)
            fields = self._tables.get(table, {}).get(record_id)
            return Ok(Record(record_id, dict(fields)) if fields is not None else None)

    async def create(
        self, table: str, fields: Mapping[str, Any]
    ) -> Result[Record, UpstreamError | ConflictError]:
        async with self._lock:
            if err := self._check(table, "create"):
                return Error(err)
            rows = self._tables.setdefault(table, {})
            for name in self._unique.get(table, ()):
                value = fields.get(name)
                if value is not None and any(_same(r.get(name), value) for r in rows.values()):
                    return Error(
                        ConflictError("unique_conflict", f"duplicate {table}.{name}={value}")
                    )
            record_id = f"rec{next(self._ids):06d}"
            rows[record_id] = dict(fields)
            return Ok(Record(record_id, dict(fields)))

    async def update(
        self, table: str, record_id: str, fields: Mapping[str, Any]
    ) -> Result[Record, UpstreamError]:
        async with self._lock:
            if err := self._check(table, "update"):
                return Error(err)
            row = self._tables.get(table, {}).get(record_id)
            if row is None:
                return Error(
                    UpstreamError("record_not_found", f"{table}/{record_id}", status=404)
                )
            row.update(fields)
            return Ok(Record(record_id, dict(row)))


def _same(a: Any, b: Any) -> bool:
    return a is not None and str(a) == str(b)


def _matches(fields: Mapping[str, Any], where: Mapping[str, Any]) -> bool:
    return all(_same(fields.get(name), value) for name, value in where.items())


__all__ = ("MemoryRecordStore",)
