from dataclasses import dataclass
from typing import Literal

from jobledger.wire.guards import Guard


type Method = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]
type Path = str


@dataclass(frozen=True, slots=True)
class HTTPRouteTrigger:
    """
    One HTTP route. Guards run in order before the body is validated;
    the first rejection answers the request.
    """

    method: Method
    path: Path
    guards: tuple[Guard, ...] = ()
