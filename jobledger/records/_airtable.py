
"""
Airtable record store over httpx.

Logical table/field names are translated through AirtableSettings:

    tables:    "payments" → "tblXXXX"
    field_map: {"payments": {"payment_ref": "fldXXXX"}}

Writes and filter formulas use the field id; reads ask Airtable to key
fields by id (returnFieldsByFieldId) and map them back, so the core only
ever sees logical names.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from combinators import lift as L
from kungfu import Result, Ok, Error

from jobledger.config import AirtableSettings
from jobledger.errors import ConflictError, UpstreamError
from jobledger.records._types import Record

log = logging.getLogger("jobledger.records")


def formula_literal(value: Any) -> str:
    """Quote a value for an Airtable formula string literal."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def equality_formula(where: Mapping[str, str]) -> str:
    """{a}="1" for one condition, AND({a}="1",{b}="2") for several."""
    terms = [f"{{{name}}}={formula_literal(value)}" for name, value in where.items()]
    if len(terms) == 1:
        return terms[0]
    return f"AND({','.join(terms)})"


class AirtableRecordStore:
    """
    RecordStore backed by the Airtable REST API.

    Note: Airtable has no unique constraints. A rejection whose message
    mentions "duplicate" or "unique" (from automations or scripts guarding
    a table) is reported as ConflictError.
    """

    def __init__(
        self,
        settings: AirtableSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── mapping ─────────────────────────────────────────────────────────────

    def _table(self, table: str) -> str:
        return self._settings.tables.get(table, table)

    def _out(self, table: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        mapping = self._settings.field_map.get(table, {})
        return {mapping.get(name, name): value for name, value in fields.items()}

    def _in(self, table: str, payload: Mapping[str, Any]) -> Record:
        reverse = {v: k for k, v in self._settings.field_map.get(table, {}).items()}
        raw = payload.get("fields") or {}
        fields = {reverse.get(name, name): value for name, value in raw.items()}
        return Record(str(payload.get("id", "")), fields)

    def _by_field_id(self, table: str) -> bool:
        return bool(self._settings.field_map.get(table))

    def _read_params(self, table: str) -> dict[str, str]:
        return {"returnFieldsByFieldId": "true"} if self._by_field_id(table) else {}

    def _write_body(self, table: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        body: dict[str, Any] = {"fields": self._out(table, fields), "typecast": True}
        if self._by_field_id(table):
            body["returnFieldsByFieldId"] = True
        return body

    # ── transport ───────────────────────────────────────────────────────────

    async def _call(
        self,
        method: str,
        table: str,
        *,
        record_id: str | None = None,
        params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> Result[dict[str, Any], UpstreamError]:
        if not self._settings.configured:
            return Error(UpstreamError("record_store_not_configured", "missing api key or base id"))

        url = f"{self._settings.api_url}/{self._settings.base_id}/{self._table(table)}"
        if record_id:
            url += f"/{record_id}"

        sent = await L.catching_async(
            lambda: self._client.request(
                method,
                url,
                params=params,
                json=body,
                headers={"Authorization": f"Bearer {self._settings.api_key}"},
            ),
            on_error=lambda e: UpstreamError("record_store_unreachable", str(e)),
        )

        match sent:
            case Error(err):
                log.warning("airtable %s %s unreachable: %s", method, table, err.message)
                return Error(err)
            case Ok(response):
                try:
                    data = response.json() if response.content else {}
                except ValueError:
                    data = {"raw": response.text}
                if response.is_success:
                    return Ok(data)
                log.warning("airtable %s %s failed: %s", method, table, response.status_code)
                return Error(
                    UpstreamError(
                        "record_store_failed",
                        f"{method} {table} returned {response.status_code}",
                        status=response.status_code,
                        detail=data.get("error") if isinstance(data, dict) else data,
                    )
                )

    # ── RecordStore ─────────────────────────────────────────────────────────

    async def find(
        self,
        table: str,
        where: Mapping[str, Any],
        *,
        limit: int = 1,
    ) -> Result[list[Record], UpstreamError]:
        params = {"maxRecords": str(limit), **self._read_params(table)}
        if where:
            params["filterByFormula"] = equality_formula(self._out(table, where))
        match await self._call("GET", table, params=params):
            case Ok(data):
                return Ok([self._in(table, rec) for rec in data.get("records", [])])
            case Error(err):
                return Error(err)

    async def get(self, table: str, record_id: str) -> Result[Record | None, UpstreamError]:
        match await self._call("GET", table, record_id=record_id, params=self._read_params(table)):
            case Ok(data):
                return Ok(self._in(table, data))
            case Error(UpstreamError(status=404)):
                return Ok(None)
            case Error(err):
                return Error(err)

    async def create(
        self, table: str, fields: Mapping[str, Any]
    ) -> Result[Record, UpstreamError | ConflictError]:
        body = self._write_body(table, fields)
        match await self._call("POST", table, body=body):
            case Ok(data):
                return Ok(self._in(table, data))
            case Error(err) if _is_unique_violation(err):
                return Error(ConflictError("unique_conflict", err.message))
            case Error(err):
                return Error(err)

    async def update(
        self, table: str, record_id: str, fields: Mapping[str, Any]
    ) -> Result[Record, UpstreamError]:
        body = self._write_body(table, fields)
        match await self._call("PATCH", table, record_id=record_id, body=body):
            case Ok(data):
                return Ok(self._in(table, data))
            case Error(err):
                return Error(err)


def _is_unique_violation(err: UpstreamError) -> bool:
    text = f"{err.message} {err.detail}".lower()
    return "duplicate" in text or "unique" in text


__all__ = (
    "AirtableRecordStore",
    "equality_formula",
    "formula_literal",
)
