from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, Self

from jobledger.ops import Op


class ToDomain[D](Protocol):
    def to_domain(self) -> D: ...


class FromDomain[D](Protocol):
    @classmethod
    def from_domain(cls, dom: D) -> Self: ...

    def model_dump(self, *, mode: str = ...) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class RequestResponseCodec:
    """
    request:  pydantic model with to_domain() → Op
    response: pydantic model with from_domain(ok value) → model

    Note: Error values never reach the response model; the transport
    renders them from the error type.
    """

    request: type[ToDomain[Any]]
    response: type[FromDomain[Any]]

    if TYPE_CHECKING:

        def __init__[T, E](
            self,
            request: type[ToDomain[Op[T, E]]],
            response: type[FromDomain[T]],
        ) -> None: ...
