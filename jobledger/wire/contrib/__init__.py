"""
Contrib — transport integrations. Access integrations via submodules.

    from jobledger.wire.contrib import fastapi
    # app = fastapi.from_application(Application())
"""

from jobledger.wire.contrib import fastapi

__all__ = ("fastapi",)
