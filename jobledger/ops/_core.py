"""
Ops — data-driven dispatch with automatic DI.

Core idea:
- Op[T, E] is the base class for request values
- a handler is registered per Op type
- handler parameters are resolved by type hint: the Op itself, or a
  dependency injected into the runner

Example:
    @dataclass(frozen=True, slots=True)
    class GetJob(Op[Job, CoreError]):
        job_id: str

    async def get_job(req: GetJob, dispatch: DispatchService) -> Result[Job, CoreError]:
        return await dispatch.get_job(req.job_id)

    runner = ops().on(GetJob, get_job).compile().inject(DispatchService, service)
    result = await runner.run(GetJob("J1"))
"""

from __future__ import annotations

import inspect
from abc import ABC
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, cast, get_type_hints

from kungfu import Result, LazyCoroResult

type HandlerFunc = Callable[..., Awaitable[Result[Any, Any]]]


class Op[T, E](ABC):
    """
    Base class for operations.

    Note: T and E document the handler's Result type; they are not
    checked at runtime.
    """


@dataclass(frozen=True, slots=True)
class _OpReg:
    """Registration: Op type → handler + resolved parameter types."""
    op_type: type[Op[Any, Any]]
    handler: HandlerFunc
    params: tuple[tuple[str, Any], ...]


def _resolve_params(op_type: type[Op[Any, Any]], handler: HandlerFunc) -> tuple[tuple[str, Any], ...]:
    """
    Handler params by type hint:
    - req: OpType → the running request
    - dep: SomeClass → injected dependency
    """
    sig = inspect.signature(handler)
    hints = get_type_hints(handler)
    params: list[tuple[str, Any]] = []
    for pname, p in sig.parameters.items():
        ptype = hints.get(pname, p.annotation)
        if ptype is inspect.Parameter.empty:
            raise TypeError(f"{handler.__name__}: parameter {pname!r} needs a type hint")
        params.append((pname, ptype))
    if not any(ptype is op_type for _, ptype in params):
        raise TypeError(f"{handler.__name__} does not accept {op_type.__name__}")
    return tuple(params)


@dataclass(slots=True, frozen=True)
class OpsBuilder:
    """Builder for operation handlers."""
    _items: tuple[tuple[type[Op[Any, Any]], HandlerFunc], ...] = ()

    def on(
        self,
        op_type: type[Op[Any, Any]],
        handler: HandlerFunc,
    ) -> OpsBuilder:
        """Register handler for operation type."""
        # Last registration wins
        others = tuple(i for i in self._items if i[0] is not op_type)
        return OpsBuilder(_items=(*others, (op_type, handler)))

    def compile(self) -> Runner:
        """Resolve handler signatures into a runner."""
        registrations = {
            op_type: _OpReg(op_type, handler, _resolve_params(op_type, handler))
            for op_type, handler in self._items
        }
        return Runner(_registry=registrations)


@dataclass(slots=True)
class Runner:
    """
    Executes operations.

    Note: A missing handler or dependency is a wiring bug and raises
    LookupError; everything the handler returns passes through unchanged.
    """
    _registry: dict[type[Op[Any, Any]], _OpReg]
    _deps: dict[Any, object] = field(default_factory=dict)

    def inject(self, typ: Any, impl: object) -> Runner:
        """Inject shared dependency."""
        self._deps[typ] = impl
        return self

    def handles(self, op_type: type[Op[Any, Any]]) -> bool:
        return op_type in self._registry

    async def run[T, E](self, req: Op[T, E]) -> Result[T, E]:
        op_type = type(req)
        reg = self._registry.get(op_type)
        if reg is None:
            raise LookupError(f"Op not registered: {op_type.__name__}")

        kwargs: dict[str, Any] = {}
        for pname, ptype in reg.params:
            if ptype is op_type:
                kwargs[pname] = req
            elif ptype in self._deps:
                kwargs[pname] = self._deps[ptype]
            else:
                raise LookupError(
                    f"{reg.handler.__name__}: nothing injected for {pname}: {ptype!r}"
                )
        return cast(Result[T, E], await reg.handler(**kwargs))

    def __call__[T, E](self, req: Op[T, E]) -> LazyCoroResult[T, E]:
        """Execute operation (returns awaitable)."""
        async def inner() -> Result[T, E]:
            return await self.run(req)
        return LazyCoroResult(inner)


def ops() -> OpsBuilder:
    """Create ops builder: ops().on(...).compile()"""
    return OpsBuilder()


__all__ = ("Op", "OpsBuilder", "Runner", "ops", "HandlerFunc")
