"""
Codecs — convert transport payloads to domain ops and back.

    from jobledger.wire.codecs import RequestResponseCodec

    # class Request(BaseModel): implements to_domain()
    # class Response(BaseModel): implements from_domain()
    # codec = RequestResponseCodec(Request, Response)
"""

from jobledger.wire.codecs.rrc import (
    RequestResponseCodec,
    ToDomain,
    FromDomain,
)

__all__ = (
    "RequestResponseCodec",
    "ToDomain",
    "FromDomain",
)
