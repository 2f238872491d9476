"""
Event log — ordered, append-only, immutable.

Serialized to JSON only at the record-store boundary (the `events_json`
field). A missing or corrupt stored log reads as empty.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

log = logging.getLogger("jobledger.dispatch")


@dataclass(frozen=True, slots=True)
class Event:
    ts: str
    event: str
    by: str = "system"
    event_raw: str | None = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ts": self.ts, "event": self.event, "by": self.by}
        if self.event_raw is not None:
            out["event_raw"] = self.event_raw
        if self.data is not None:
            out["data"] = self.data
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Event:
        return cls(
            ts=str(raw.get("ts") or ""),
            event=str(raw.get("event") or ""),
            by=str(raw.get("by") or "system"),
            event_raw=raw.get("event_raw"),
            data=raw.get("data"),
        )


@dataclass(frozen=True, slots=True)
class EventLog:
    events: tuple[Event, ...] = field(default_factory=tuple)

    def append(self, event: Event) -> EventLog:
        return EventLog((*self.events, event))

    def contains(self, name: str) -> bool:
        return any(e.event == name for e in self.events)

    @property
    def last(self) -> Event | None:
        return self.events[-1] if self.events else None

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)

    def serialize(self) -> str:
        return json.dumps([e.to_dict() for e in self.events], ensure_ascii=False)

    @classmethod
    def parse(cls, raw: Any) -> EventLog:
        """
        Tolerant read of a stored log.

        Accepts a JSON string or an already-decoded list. Anything else,
        including malformed JSON, is logged and treated as an empty log.
        Non-object entries inside a valid list are dropped.
        """
        if raw is None or raw == "":
            return cls()
        items: Any = raw
        if isinstance(raw, str):
            try:
                items = json.loads(raw)
            except ValueError:
                log.warning("corrupt event log ignored (invalid JSON, %d chars)", len(raw))
                return cls()
        if not isinstance(items, list):
            log.warning("corrupt event log ignored (expected list, got %s)", type(items).__name__)
            return cls()

        events = tuple(Event.from_dict(item) for item in items if isinstance(item, Mapping))
        if len(events) != len(items):
            log.warning("dropped %d malformed event entries", len(items) - len(events))
        return cls(events)


__all__ = ("Event", "EventLog")
