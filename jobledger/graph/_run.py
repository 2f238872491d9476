"""
Fluent runner — sugar over nodnod.

Auto-discovers nodes reachable from a target, injects values by type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast
from collections.abc import Callable, Coroutine

from nodnod import Scope, Value, EventLoopAgent, Node


# ═══════════════════════════════════════════════════════════════════════════════
# TypedScope
# ═══════════════════════════════════════════════════════════════════════════════

class TypedScope:
    """Type-keyed wrapper around nodnod.Scope."""

    __slots__ = ("_scope",)

    def __init__(self, scope: Scope | None = None, detail: str = "scope") -> None:
        self._scope = scope if scope is not None else Scope(detail=detail)

    @property
    def inner(self) -> Scope:
        return self._scope

    def inject[T](self, typ: type[T], value: T) -> TypedScope:
        self._scope.push(Value(typ, value))
        return self

    def get[T](self, typ: type[T]) -> T:
        result = self._scope.get(typ)
        if result is None:
            raise KeyError(f"{typ.__name__} not found in scope")
        return cast(T, result.value)

    async def __aenter__(self) -> TypedScope:
        await self._scope.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._scope.__aexit__(*args)


# ═══════════════════════════════════════════════════════════════════════════════
# Run: awaitable builder
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(slots=True)
class Run[T]:
    """
    Runner for one target node.

        decision = await run(FinalResultNode).inject(spec)
    """
    _target: type[T]
    _injections: tuple[tuple[type[Any], Any], ...]

    def inject(self, value: object) -> Run[T]:
        """Inject a value under its runtime type."""
        return Run(
            _target=self._target,
            _injections=(*self._injections, (cast(type[Any], type(value)), value)),
        )

    def inject_as[V](self, typ: type[V], value: V) -> Run[T]:
        """Inject under an explicit type (protocols, base classes)."""
        typed_tuple: tuple[type[Any], Any] = (typ, value)
        return Run(
            _target=self._target,
            _injections=(*self._injections, typed_tuple),
        )

    def __await__(self) -> Any:
        return self._execute().__await__()

    async def _execute(self) -> T:
        agent = EventLoopAgent.build({cast(type[Node[Any, Any]], self._target)})

        async with TypedScope(detail=f"run:{self._target.__name__}") as scope:
            for typ, value in self._injections:
                scope.inject(typ, value)

            run_method = cast(
                Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
                getattr(agent, "run"),
            )
            await run_method(scope.inner, {})

            return scope.get(self._target)


def run[T](target: type[T]) -> Run[T]:
    """Start a run of `target`; dependencies are discovered from its __compose__."""
    return Run(_target=target, _injections=())


__all__ = ("TypedScope", "Run", "run")
