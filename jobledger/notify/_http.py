"""Shared JSON-over-HTTP call for outbound collaborators."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from combinators import lift as L
from kungfu import Result, Ok, Error

from jobledger.errors import UpstreamError

log = logging.getLogger("jobledger.notify")


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    body: Mapping[str, Any],
    *,
    code: str,
    headers: Mapping[str, str] | None = None,
) -> Result[dict[str, Any], UpstreamError]:
    """
    POST a JSON body, expect a JSON object back.

    Transport errors, non-2xx statuses and `{"ok": false}` bodies all become
    UpstreamError(code, ...).
    """
    sent = await L.catching_async(
        lambda: client.post(url, json=dict(body), headers=dict(headers or {})),
        on_error=lambda e: UpstreamError(code, str(e)),
    )
    match sent:
        case Error(err):
            log.warning("%s: %s", code, err.message)
            return Error(err)
        case Ok(response):
            try:
                data = response.json()
            except ValueError:
                data = None
            if not response.is_success or not isinstance(data, dict) or data.get("ok") is False:
                log.warning("%s: status=%s", code, response.status_code)
                return Error(
                    UpstreamError(
                        code,
                        f"upstream returned {response.status_code}",
                        status=response.status_code,
                        detail=data if data is not None else response.text[:500],
                    )
                )
            return Ok(data)


__all__ = ("post_json",)
