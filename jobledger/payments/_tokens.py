"""
Signed pay tokens.

    v1.<base64url(payload JSON)>.<base64url(HMAC-SHA256(payload part, secret))>

Base64url without padding. The signature covers the payload part exactly as
it appears in the token, so any JSON layout verifies.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
from collections.abc import Mapping
from typing import Any

from kungfu import Result, Ok, Error

from jobledger.errors import AuthError

TOKEN_VERSION = "v1"


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _signature(payload_part: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), payload_part.encode(), hashlib.sha256).digest()
    return _b64encode(digest)


def sign_token(payload: Mapping[str, Any], secret: str) -> str:
    part = _b64encode(json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode())
    return f"{TOKEN_VERSION}.{part}.{_signature(part, secret)}"


def expiry_ms(payload: Mapping[str, Any]) -> float | None:
    """exp_ms, else exp in seconds. None when absent, zero or not a number."""
    for name, scale in (("exp_ms", 1), ("exp", 1000)):
        raw = payload.get(name)
        if raw is None:
            continue
        try:
            value = float(raw) * scale
        except (TypeError, ValueError):
            return None
        return value if value and math.isfinite(value) else None
    return None


def read_token(token: str, secret: str, now_ms: int) -> Result[dict[str, Any], AuthError]:
    """
    Check format, signature and expiry; return the payload.

    Note: A payload without an expiry never expires.
    """
    parts = token.split(".")
    if len(parts) != 3 or parts[0] != TOKEN_VERSION:
        return Error(AuthError("invalid_token_format", "expected v1.<payload>.<signature>"))
    if not secret:
        return Error(AuthError("token_secret_missing", "no signing secret configured"))

    _, part, signature = parts
    if not hmac.compare_digest(_signature(part, secret).encode(), signature.encode()):
        return Error(AuthError("invalid_signature", "token signature does not match"))

    try:
        payload = json.loads(_b64decode(part))
    except ValueError:
        return Error(AuthError("invalid_payload_json", "token payload is not JSON"))
    if not isinstance(payload, dict):
        return Error(AuthError("invalid_payload_json", "token payload is not an object"))

    expires = expiry_ms(payload)
    if expires is not None and now_ms > expires:
        return Error(AuthError("token_expired", "token has expired"))
    return Ok(payload)


__all__ = (
    "TOKEN_VERSION",
    "sign_token",
    "read_token",
    "expiry_ms",
)
