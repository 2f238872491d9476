"""
jobledger — job dispatch ledger and payment intents over a record store.

    from jobledger import dispatch as D      # Job state machine + payment gate
    from jobledger import payments as P      # Transaction refs, paid ledgers
    from jobledger import idempotency as I   # Operation result cache
    from jobledger import ops as O           # Op dispatch with DI

HTTP surface: jobledger.app.create_app().
"""

from jobledger import idempotency
from jobledger import records
from jobledger import notify
from jobledger import dispatch
from jobledger import payments
from jobledger import ops
from jobledger._types import Clock

__version__ = "0.1.0"

__all__ = (
    "idempotency",
    "records",
    "notify",
    "dispatch",
    "payments",
    "ops",
    "Clock",
)
