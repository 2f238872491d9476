"""
Records — the spreadsheet-style store the core reads and writes.

    from jobledger import records as R

    store: R.RecordStore = R.MemoryRecordStore(unique={"points_ledger": ("payment_ref",)})
    match await R.find_one(store, "jobs", {"job_id": "J1"}):
        case Ok(R.Record(id=rid, fields=f)): ...
"""

from jobledger.records._types import Record, RecordStore, find_one
from jobledger.records._memory import MemoryRecordStore
from jobledger.records._airtable import (
    AirtableRecordStore,
    equality_formula,
    formula_literal,
)

__all__ = (
    "Record",
    "RecordStore",
    "find_one",
    "MemoryRecordStore",
    "AirtableRecordStore",
    "equality_formula",
    "formula_literal",
)
