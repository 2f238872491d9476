"""
Telegram notifier — one forum thread per flow, HTML parse mode.
"""

from __future__ import annotations

import html
from typing import Any

import httpx
from kungfu import Result, Ok, Error

from jobledger.config import TelegramSettings
from jobledger.errors import UpstreamError
from jobledger.notify._http import post_json
from jobledger.notify._types import Payload

# Fields rendered first, in this order; the rest follow alphabetically.
_LEADING = ("event", "status", "job_id", "session_id", "transaction_ref", "amount", "ts")


def format_message(payload: Payload) -> str:
    """
    Minimal HTML rendering: a bold flow title, then one `key: value` line per field.

    Note: Values are escaped; nested values are rendered with str().
    """
    flow = str(payload.get("flow") or "notice")
    lines = [f"<b>{html.escape(flow.upper())}</b>"]
    keys = [k for k in _LEADING if k in payload]
    keys += sorted(k for k in payload if k not in _LEADING and k != "flow")
    for key in keys:
        value = payload[key]
        if value is None or value == "":
            continue
        lines.append(f"<b>{html.escape(key)}:</b> {html.escape(str(value))}")
    return "\n".join(lines)


class TelegramNotifier:
    """Notifier over the Telegram Bot API sendMessage."""

    def __init__(
        self,
        settings: TelegramSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def thread_for(self, flow: str) -> int | None:
        threads = self._settings.threads
        return threads.get(flow) or threads.get("default")

    async def send(self, payload: Payload) -> Result[dict[str, Any], UpstreamError]:
        if not self._settings.configured:
            return Error(UpstreamError("notifier_not_configured", "missing bot token or chat id"))

        flow = str(payload.get("flow") or "").strip().lower()
        thread_id = self.thread_for(flow)
        if thread_id is None:
            return Error(UpstreamError("thread_missing", f"no thread for flow={flow}"))

        url = f"{self._settings.api_url}/bot{self._settings.bot_token}/sendMessage"
        body = {
            "chat_id": self._settings.chat_id,
            "message_thread_id": thread_id,
            "text": format_message(payload),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        match await post_json(self._client, url, body, code="notify_failed"):
            case Ok(_):
                return Ok({"ok": True, "flow": flow, "thread_id": thread_id})
            case Error(err):
                return Error(err)


__all__ = ("TelegramNotifier", "format_message")
