from __future__ import annotations

from dataclasses import dataclass

import pytest
from kungfu import Result, Ok, Error

from jobledger.config import Settings
from jobledger.dispatch import DispatchService, JobDraft
from jobledger.ops import ApplyEvent, CreateJob, Health, Op, catalog, ops
from jobledger.records import MemoryRecordStore

from conftest import err, ok, seed_job


class Greeter:
    def __init__(self, greeting: str) -> None:
        self.greeting = greeting


@dataclass(frozen=True, slots=True)
class Greet(Op[str, str]):
    name: str


@dataclass(frozen=True, slots=True)
class Unhandled(Op[None, str]):
    pass


async def greet(req: Greet, greeter: Greeter) -> Result[str, str]:
    if not req.name:
        return Error("nobody")
    return Ok(f"{greeter.greeting}, {req.name}")


async def untyped(req, greeter):  # type: ignore[no-untyped-def]
    return Ok(None)


async def greeter_only(greeter: Greeter) -> Result[str, str]:
    return Ok(greeter.greeting)


class TestRunner:
    @pytest.mark.asyncio
    async def test_injects_dependencies_by_type(self) -> None:
        runner = ops().on(Greet, greet).compile().inject(Greeter, Greeter("hello"))
        assert ok(await runner.run(Greet("Somchai"))) == "hello, Somchai"
        assert err(await runner(Greet(""))) == "nobody"

    @pytest.mark.asyncio
    async def test_missing_dependency_is_a_wiring_bug(self) -> None:
        runner = ops().on(Greet, greet).compile()
        with pytest.raises(LookupError, match="greeter"):
            await runner.run(Greet("x"))

    @pytest.mark.asyncio
    async def test_unregistered_op(self) -> None:
        runner = ops().on(Greet, greet).compile()
        assert not runner.handles(Unhandled)
        with pytest.raises(LookupError, match="Unhandled"):
            await runner.run(Unhandled())

    def test_handler_signatures_are_checked(self) -> None:
        with pytest.raises(TypeError, match="type hint"):
            ops().on(Greet, untyped).compile()
        with pytest.raises(TypeError, match="does not accept"):
            ops().on(Greet, greeter_only).compile()


class TestCatalog:
    @pytest.mark.asyncio
    async def test_service_ops(self, dispatch: DispatchService) -> None:
        runner = catalog().compile().inject(DispatchService, dispatch).inject(Settings, Settings())

        job = ok(await runner.run(CreateJob(JobDraft(job_id="J7", city="Pattaya"))))
        applied = ok(await runner.run(ApplyEvent(job.job_id, "reminder", idempotency_key="r1")))
        assert applied.status == "reminder"

        health = ok(await runner.run(Health()))
        assert health["service"] == "jobledger"
        assert health["integrations"]["airtable"] is False

    @pytest.mark.asyncio
    async def test_gate_error_passes_through(
        self, dispatch: DispatchService, records: MemoryRecordStore
    ) -> None:
        seed_job(records, status="met_customer")
        runner = catalog().compile().inject(DispatchService, dispatch)
        assert err(await runner.run(ApplyEvent("J1", "work_started"))).code == "final_payment_required"
