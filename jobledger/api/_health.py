from typing import Any

from pydantic import BaseModel

from jobledger import ops as O


class HealthIn(BaseModel):
    def to_domain(self) -> O.Health:
        return O.Health()


class HealthOut(BaseModel):
    service: str
    time: str
    integrations: dict[str, bool]

    @classmethod
    def from_domain(cls, dom: dict[str, Any]) -> "HealthOut":
        return cls.model_validate(dom)
