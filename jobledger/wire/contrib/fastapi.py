"""
FastAPI integration for jobledger.wire.

    from jobledger.wire.contrib import fastapi
    # fapp = fastapi.from_application(app, cors_origins=origins)
"""

from jobledger.wire.contrib._fastapi import (
    add_endpoint_to_app,
    from_application,
    compile_to_fastapi_route,
    make_handler,
    error_response,
    mask_headers,
    install_request_log,
)

__all__ = (
    "add_endpoint_to_app",
    "from_application",
    "compile_to_fastapi_route",
    "make_handler",
    "error_response",
    "mask_headers",
    "install_request_log",
)
