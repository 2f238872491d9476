"""
Boundary guards — checks that run before a request reaches its op.

    SharedSecret(settings.confirm_key)      → 401 unauthorized
    OriginAllowList(settings.allowed_origins) → 403 origin_not_allowed
    BotCheck(TurnstileVerifier(...))        → 403 turnstile_failed

A guard returns Ok(None) to let the request through or Error(AuthError).
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

import httpx
from combinators import lift as L
from kungfu import Result, Ok, Error

from jobledger.errors import AuthError, UpstreamError

log = logging.getLogger("jobledger.wire")

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


@dataclass(frozen=True, slots=True)
class GuardRequest:
    """What a guard may look at. Header names are lower-cased."""

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    client_ip: str | None = None
    body: Mapping[str, Any] | None = None


class Guard(Protocol):
    # True → runs after the JSON body is parsed, with request.body set.
    reads_body: ClassVar[bool]

    async def check(self, request: GuardRequest) -> Result[None, AuthError]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Shared secret
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SharedSecret:
    """
    Exact match of a secret header.

    Note: An empty configured secret rejects every request.
    """

    secret: str
    header: str = "x-confirm-key"
    reads_body: ClassVar[bool] = False

    async def check(self, request: GuardRequest) -> Result[None, AuthError]:
        given = request.headers.get(self.header, "")
        if self.secret and given and hmac.compare_digest(given.encode(), self.secret.encode()):
            return Ok(None)
        return Error(AuthError("unauthorized", f"missing or invalid {self.header}", 401))


# ═══════════════════════════════════════════════════════════════════════════════
# Origin allow-list
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class OriginAllowList:
    """
    Browser origin check for public routes.

    Requests without an Origin header (server-to-server) pass, as does
    everything when the list is empty.
    """

    origins: tuple[str, ...] = ()
    reads_body: ClassVar[bool] = False

    async def check(self, request: GuardRequest) -> Result[None, AuthError]:
        origin = request.headers.get("origin", "").strip()
        if not origin or not self.origins or origin in self.origins:
            return Ok(None)
        log.info("origin rejected origin=%s path=%s", origin, request.path)
        return Error(AuthError("origin_not_allowed", f"origin {origin} is not allowed", 403))


# ═══════════════════════════════════════════════════════════════════════════════
# Bot verification
# ═══════════════════════════════════════════════════════════════════════════════


class TurnstileVerifier:
    """Cloudflare Turnstile siteverify client."""

    def __init__(
        self,
        secret: str,
        client: httpx.AsyncClient | None = None,
        url: str = SITEVERIFY_URL,
    ) -> None:
        self._secret = secret
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._url = url

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    async def verify(self, token: str, remote_ip: str | None = None) -> Result[bool, UpstreamError]:
        form = {"secret": self._secret, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        sent = await L.catching_async(
            lambda: self._client.post(self._url, data=form),
            on_error=lambda e: UpstreamError("turnstile_unreachable", str(e)),
        )
        match sent:
            case Error(err):
                return Error(err)
            case Ok(response) if not response.is_success:
                return Error(
                    UpstreamError(
                        "turnstile_failed",
                        f"siteverify returned {response.status_code}",
                        status=response.status_code,
                    )
                )
            case Ok(response):
                try:
                    data = response.json()
                except ValueError:
                    return Error(UpstreamError("turnstile_failed", "siteverify returned non-JSON"))
                return Ok(bool(isinstance(data, dict) and data.get("success")))

    async def aclose(self) -> None:
        await self._client.aclose()


class Verifier(Protocol):
    @property
    def configured(self) -> bool: ...

    async def verify(self, token: str, remote_ip: str | None = None) -> Result[bool, UpstreamError]: ...


@dataclass(frozen=True, slots=True)
class BotCheck:
    """
    Verifies a bot-protection token when one is sent and a secret is set.

    The token is read from the JSON body field `turnstile_token` (or its
    `tsToken` alias) or the `cf-turnstile-response` header.
    """

    verifier: Verifier
    token_field: str = "turnstile_token"
    token_aliases: tuple[str, ...] = ("tsToken",)
    reads_body: ClassVar[bool] = True

    def _token(self, request: GuardRequest) -> str:
        body = request.body or {}
        for name in (self.token_field, *self.token_aliases):
            if body.get(name):
                return str(body[name])
        return request.headers.get("cf-turnstile-response") or ""

    async def check(self, request: GuardRequest) -> Result[None, AuthError]:
        token = self._token(request)
        if not token or not self.verifier.configured:
            return Ok(None)

        match await self.verifier.verify(token, request.client_ip):
            case Ok(True):
                return Ok(None)
            case Ok(False):
                return Error(AuthError("turnstile_failed", "bot verification failed", 403))
            case Error(err):
                log.warning("bot verification unavailable: %s", err.message)
                return Error(AuthError("turnstile_failed", err.message, 403))


__all__ = (
    "SITEVERIFY_URL",
    "GuardRequest",
    "Guard",
    "SharedSecret",
    "OriginAllowList",
    "TurnstileVerifier",
    "Verifier",
    "BotCheck",
)
