import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from typing import Any, TypeGuard

import fastapi
import pydantic
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from kungfu import Error, Ok, Result

from jobledger.errors import AuthError, CoreError, http_status, to_body
from jobledger.ops import Op, Runner
from jobledger.wire._app import Application
from jobledger.wire._endpoint import Endpoint
from jobledger.wire._types import Exposure
from jobledger.wire.codecs.rrc import RequestResponseCodec
from jobledger.wire.guards import Guard, GuardRequest
from jobledger.wire.triggers.http import HTTPRouteTrigger, Path

log = logging.getLogger("jobledger.wire")

SENSITIVE_HEADERS = frozenset(
    {"x-confirm-key", "x-internal-token", "authorization", "cookie", "cf-turnstile-response"}
)


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: ("***" if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}


def is_http(tc: Exposure) -> TypeGuard[tuple[HTTPRouteTrigger, RequestResponseCodec]]:
    return isinstance(tc[0], HTTPRouteTrigger) and isinstance(tc[1], RequestResponseCodec)


# ═══════════════════════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════════════════════


def error_response(err: CoreError) -> JSONResponse:
    return JSONResponse(to_body(err), status_code=http_status(err))


def _invalid_json(message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": "invalid_json", "message": message}, status_code=400)


def _validation_failed(exc: pydantic.ValidationError) -> JSONResponse:
    issues = exc.errors(include_url=False, include_context=False, include_input=False)
    body: dict[str, Any] = {
        "ok": False,
        "error": "validation_error",
        "message": f"{len(issues)} invalid field(s)",
        "fields": [
            {"loc": ".".join(str(p) for p in issue["loc"]), "msg": issue["msg"]}
            for issue in issues
        ],
    }
    required = [".".join(str(p) for p in i["loc"]) for i in issues if i["type"] == "missing"]
    if required:
        body["required"] = required
    return JSONResponse(body, status_code=422)


# ═══════════════════════════════════════════════════════════════════════════════
# Route compilation
# ═══════════════════════════════════════════════════════════════════════════════


async def _first_denial(guards: Sequence[Guard], request: GuardRequest) -> AuthError | None:
    for guard in guards:
        match await guard.check(request):
            case Error(err):
                return err
            case Ok(_):
                pass
    return None


async def _read_payload(request: fastapi.Request) -> Result[dict[str, Any], str]:
    if request.method == "GET":
        return Ok(dict(request.query_params))
    raw = await request.body()
    if not raw.strip():
        return Ok({})
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        return Error(str(exc))
    if not isinstance(payload, dict):
        return Error("body must be a JSON object")
    return Ok(payload)


def make_handler(
    trigger: HTTPRouteTrigger,
    codec: RequestResponseCodec,
    runner: Runner,
) -> Callable[[fastapi.Request], Awaitable[JSONResponse]]:
    """
    guards(headers) → parse → guards(body) → validate → run → render

    Note: Unexpected exceptions become 500 server_error with the
    traceback logged; error values are rendered by type.
    """
    header_guards = [g for g in trigger.guards if not g.reads_body]
    body_guards = [g for g in trigger.guards if g.reads_body]

    async def _route_handler(request: fastapi.Request) -> JSONResponse:
        try:
            guard_req = GuardRequest(
                method=request.method,
                path=request.url.path,
                headers={k.lower(): v for k, v in request.headers.items()},
                client_ip=request.client.host if request.client else None,
            )
            if denied := await _first_denial(header_guards, guard_req):
                return error_response(denied)

            match await _read_payload(request):
                case Error(message):
                    return _invalid_json(message)
                case Ok(payload):
                    pass

            if denied := await _first_denial(body_guards, replace(guard_req, body=payload)):
                return error_response(denied)

            try:
                model = codec.request.model_validate(payload)  # type: ignore[attr-defined]
            except pydantic.ValidationError as exc:
                return _validation_failed(exc)

            op: Op[Any, Any] = model.to_domain()
            match await runner.run(op):
                case Ok(value):
                    out = codec.response.from_domain(value).model_dump(mode="json")
                    return JSONResponse({"ok": True, **out})
                case Error(err):
                    return error_response(err)
        except Exception:
            log.exception("unhandled error %s %s", request.method, request.url.path)
            return JSONResponse(
                {"ok": False, "error": "server_error", "message": "internal error"},
                status_code=500,
            )

    _route_handler.__name__ = f"{trigger.method.lower()}_{codec.request.__name__}"
    return _route_handler


def compile_to_fastapi_route(
    endp: Endpoint,
) -> list[tuple[str, Path, Any]]:  # (method, path, route_func)
    routes: list[tuple[str, str, Any]] = []
    for exposure in endp.exposures:
        if not is_http(exposure):
            continue
        trigger, codec = exposure
        routes.append((trigger.method.upper(), trigger.path, make_handler(trigger, codec, endp.runner)))
    return routes


def add_endpoint_to_app(
    app: fastapi.FastAPI,
    endp: Endpoint,
) -> None:
    for method, path, handler in compile_to_fastapi_route(endp):
        app.add_api_route(path, handler, methods=[method], response_class=JSONResponse)


# ═══════════════════════════════════════════════════════════════════════════════
# Application
# ═══════════════════════════════════════════════════════════════════════════════


def install_request_log(app: fastapi.FastAPI) -> None:
    """One INFO line per request: method, path, status, duration, masked headers."""

    @app.middleware("http")
    async def _log_request(request: fastapi.Request, call_next: Any) -> Any:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        log.info(
            "%s %s -> %d (%.1f ms) headers=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            mask_headers(dict(request.headers)),
        )
        return response


def from_application(
    app: Application,
    *,
    cors_origins: Sequence[str] = (),
    lifespan: Any = None,
) -> fastapi.FastAPI:
    f_app = fastapi.FastAPI(title=app.title, lifespan=lifespan)

    install_request_log(f_app)
    if cors_origins:
        f_app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    for endp in app.endpoints:
        add_endpoint_to_app(f_app, endp)

    return f_app
