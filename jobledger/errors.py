"""
Error values — returned inside kungfu.Error, never raised across services.

    match await service.apply_event(...):
        case Ok(applied): ...
        case Error(ConflictError(code="final_payment_required")): ...

Every error carries a stable machine-readable `code` (goes to the wire as
`error`) and a human `message`. The HTTP layer maps the error TYPE to a
status via http_status().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jobledger.idempotency._types import IdempotencyError, IdempotencyErrorKind


# ═══════════════════════════════════════════════════════════════════════════════
# Error Values
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ValidationError:
    """Missing or malformed input. Nothing was read or written."""

    code: str
    message: str = ""
    required: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class NotFoundError:
    """Referenced job / payment / session does not exist."""

    code: str
    message: str = ""


@dataclass(frozen=True, slots=True)
class ConflictError:
    """
    Request is well-formed but not allowed in the current state.

    Note: Covers the payment gate (`final_payment_required`), duplicate
    creations, idempotency key reuse and in-flight duplicates.
    """

    code: str
    message: str = ""


@dataclass(frozen=True, slots=True)
class UpstreamError:
    """External collaborator (record store, chat bot, realtime, bot check) failed."""

    code: str
    message: str = ""
    status: int | None = None
    detail: Any = None


@dataclass(frozen=True, slots=True)
class AuthError:
    """
    Boundary guard or pay token rejected the request.

    401 secret or token, 403 origin or bot, 500 when no token signing secret is set.
    """

    code: str
    message: str = ""
    status: int = 401


type CoreError = ValidationError | NotFoundError | ConflictError | UpstreamError | AuthError


# ═══════════════════════════════════════════════════════════════════════════════
# Factories
# ═══════════════════════════════════════════════════════════════════════════════


class Errors:
    """Shortcuts for the errors raised by more than one module."""

    @staticmethod
    def missing(*fields: str) -> ValidationError:
        return ValidationError(
            "missing_required_fields",
            f"required: {', '.join(fields)}",
            required=tuple(fields),
        )

    @staticmethod
    def job_not_found(job_id: str) -> NotFoundError:
        return NotFoundError("job_not_found", f"job {job_id} not found")

    @staticmethod
    def payment_not_found(ref: str) -> NotFoundError:
        return NotFoundError("payment_not_found", f"no payment record for {ref}")

    @staticmethod
    def session_not_found(session_id: str) -> NotFoundError:
        return NotFoundError("session_not_found", f"session {session_id} not found")


# ═══════════════════════════════════════════════════════════════════════════════
# Boundary Mapping
# ═══════════════════════════════════════════════════════════════════════════════


def http_status(err: CoreError) -> int:
    """Map an error value to its HTTP status."""
    match err:
        case ValidationError():
            return 422
        case NotFoundError():
            return 404
        case ConflictError():
            return 409
        case UpstreamError():
            return 502
        case AuthError(status=status):
            return status


def to_body(err: CoreError) -> dict[str, Any]:
    """Wire envelope for an error: {ok: false, error: code, ...}."""
    body: dict[str, Any] = {"ok": False, "error": err.code}
    if err.message:
        body["message"] = err.message
    match err:
        case ValidationError(required=required) if required:
            body["required"] = list(required)
        case UpstreamError(status=status, detail=detail):
            if status is not None:
                body["status"] = status
            if detail is not None:
                body["detail"] = detail
        case _:
            pass
    return body


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency Errors
# ═══════════════════════════════════════════════════════════════════════════════


def from_idempotency(err: IdempotencyError[Any]) -> CoreError:
    """
    Translate a cache-level failure into a domain error.

    EXECUTION unwraps the operation's own error value.
    """
    match err.kind:
        case IdempotencyErrorKind.EXECUTION if isinstance(
            err.original_error,
            (ValidationError, NotFoundError, ConflictError, UpstreamError, AuthError),
        ):
            return err.original_error
        case IdempotencyErrorKind.EXECUTION:
            return UpstreamError("operation_failed", err.message)
        case IdempotencyErrorKind.CONFLICT:
            return ConflictError("request_in_progress", err.message)
        case IdempotencyErrorKind.INPUT_MISMATCH:
            return ConflictError("idempotency_key_reused", err.message)
        case IdempotencyErrorKind.TIMEOUT:
            return UpstreamError("idempotency_timeout", err.message)
        case IdempotencyErrorKind.STORE_ERROR:
            return UpstreamError("idempotency_store_failed", err.message)


# ═══════════════════════════════════════════════════════════════════════════════
# Configuration Errors: the only raised ones
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class ConfigError(Exception):
    """Invalid configuration value. Raised at construction time."""

    setting: str
    reason: str
    value: Any = field(default=None)

    def __str__(self) -> str:
        return f"{self.setting}: {self.reason} (got {self.value!r})"


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "UpstreamError",
    "AuthError",
    "CoreError",
    "Errors",
    "http_status",
    "to_body",
    "from_idempotency",
    "ConfigError",
)
