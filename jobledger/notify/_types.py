"""
Notification contracts — fire-and-report.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from kungfu import Result

from jobledger.errors import UpstreamError


type Payload = Mapping[str, Any]
"""Flat notification payload. `flow` selects the channel thread."""


class Notifier(Protocol):
    """
    Sends one notification.

    Note: Never retried by callers. A failure is reported in the caller's
    result and never reverts the state change that triggered it.
    """

    async def send(self, payload: Payload) -> Result[dict[str, Any], UpstreamError]: ...


class RoomOpener(Protocol):
    """Opens the realtime chat room of a job."""

    async def open_room(self, payload: Payload) -> Result[dict[str, Any], UpstreamError]: ...


__all__ = ("Payload", "Notifier", "RoomOpener")
