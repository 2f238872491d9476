"""
Realtime rooms client — asks the realtime worker to open a job's live chat room.
"""

from __future__ import annotations

from typing import Any

import httpx
from kungfu import Result, Error

from jobledger.config import RealtimeSettings
from jobledger.errors import UpstreamError
from jobledger.notify._http import post_json
from jobledger.notify._types import Payload


class RealtimeRooms:
    """
    POST {base_url}/v1/rt/room/open with X-Internal-Token.

    The worker answers {ok, job_id, room, live_customer_url, live_model_url}.
    """

    def __init__(
        self,
        settings: RealtimeSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def open_room(self, payload: Payload) -> Result[dict[str, Any], UpstreamError]:
        if not self._settings.configured:
            return Error(UpstreamError("realtime_not_configured", "missing REALTIME_BASE_URL"))
        return await post_json(
            self._client,
            f"{self._settings.base_url}/v1/rt/room/open",
            payload,
            code="realtime_open_failed",
            headers={"X-Internal-Token": self._settings.internal_token},
        )


__all__ = ("RealtimeRooms",)
