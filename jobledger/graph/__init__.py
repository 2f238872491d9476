"""
Graph — decision graphs over nodnod.

    from jobledger import graph as G

    @G.node
    class FetchRecord:
        @classmethod
        async def __compose__(cls, spec: IdempotencySpec) -> FetchRecord:
            ...

    node = await G.run(FinalResultNode).inject(spec)
"""

from nodnod import scalar_node as node

from jobledger.graph._run import (
    TypedScope,
    Run,
    run,
)

__all__ = (
    "node",
    "TypedScope",
    "run",
    "Run",
)
