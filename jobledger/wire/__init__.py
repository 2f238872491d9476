"""
Wire — expose ops via triggers and codecs.

    from jobledger import ops as O
    from jobledger.wire import endpoint, application
    from jobledger.wire.triggers.http import HTTPRouteTrigger
    from jobledger.wire.codecs.rrc import RequestResponseCodec

    endp = endpoint(runner).expose(
        HTTPRouteTrigger("POST", "/v1/jobs/events", guards=(SharedSecret(key),)),
        RequestResponseCodec(ApplyEventIn, ApplyEventOut),
    )
    app = application().mount(endp)
    fapp = contrib.fastapi.from_application(app)
"""

from jobledger.wire._endpoint import (
    Endpoint,
    endpoint,
)
from jobledger.wire._app import Application, application
from jobledger.wire._types import (
    Trigger,
    Codec,
    Exposure,
)
from jobledger.wire.guards import (
    GuardRequest,
    Guard,
    SharedSecret,
    OriginAllowList,
    BotCheck,
    TurnstileVerifier,
    Verifier,
)

# Common codecs and triggers
from jobledger.wire.codecs.rrc import RequestResponseCodec
from jobledger.wire.triggers.http import (
    HTTPRouteTrigger,
    Method,
    Path,
)

# Subpackages
from jobledger.wire import codecs, triggers, contrib

__all__ = (
    # Core API
    "Endpoint",
    "endpoint",
    "Application",
    "application",
    "Trigger",
    "Codec",
    "Exposure",
    # Guards
    "GuardRequest",
    "Guard",
    "SharedSecret",
    "OriginAllowList",
    "BotCheck",
    "TurnstileVerifier",
    "Verifier",
    # Built-ins
    "RequestResponseCodec",
    "HTTPRouteTrigger",
    "Method",
    "Path",
    # Subpackages
    "codecs",
    "triggers",
    "contrib",
)
