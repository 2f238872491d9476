"""
Triggers — describe how endpoints are exposed (HTTP routes).

    from jobledger.wire.triggers.http import HTTPRouteTrigger

    http = HTTPRouteTrigger("POST", "/v1/jobs/events", guards=(secret,))
"""

from jobledger.wire.triggers import http


__all__ = ("http",)
