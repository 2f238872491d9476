"""
Composition root.

    app = create_app()                      # Settings.from_env(os.environ)
    app = create_app(settings, records=MemoryRecordStore(), notifier=fake)

Collaborators not passed in are built from settings: Airtable records,
Telegram notifier, realtime rooms, Turnstile verifier, and a memory or
SQLAlchemy idempotency cache.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import fastapi
from kungfu import Ok, Error
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from jobledger import idempotency as I
from jobledger import ops as O
from jobledger import wire as W
from jobledger._types import Clock, utcnow
from jobledger.api import endpoints
from jobledger.config import Settings
from jobledger.dispatch import DispatchService
from jobledger.notify import Notifier, RealtimeRooms, RoomOpener, TelegramNotifier
from jobledger.payments import PaymentService
from jobledger.records import AirtableRecordStore, RecordStore

log = logging.getLogger("jobledger.app")


@dataclass
class Services:
    settings: Settings
    records: RecordStore
    notifier: Notifier
    rooms: RoomOpener
    cache: I.StoreAny
    verifier: W.Verifier
    dispatch: DispatchService
    payments: PaymentService
    engine: AsyncEngine | None = None
    # Built here, closed on shutdown.
    owned: list[Any] = field(default_factory=list)

    def runner(self) -> O.Runner:
        return (
            O.catalog()
            .compile()
            .inject(Settings, self.settings)
            .inject(DispatchService, self.dispatch)
            .inject(PaymentService, self.payments)
        )

    async def startup(self) -> None:
        if self.engine is not None:
            await I.init_schema(self.engine)
            log.info("idempotency schema ready")
        if isinstance(self.cache, I.MemoryStore | I.SQLAlchemyStore):
            match await self.cache.purge_expired():
                case Ok(removed):
                    log.info("purged %d expired idempotency records", removed)
                case Error(err):
                    log.warning("idempotency purge failed: %s", err.message)

    async def aclose(self) -> None:
        for component in self.owned:
            await component.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_services(
    settings: Settings,
    *,
    records: RecordStore | None = None,
    notifier: Notifier | None = None,
    rooms: RoomOpener | None = None,
    cache: I.StoreAny | None = None,
    verifier: W.Verifier | None = None,
    clock: Clock = utcnow,
) -> Services:
    owned: list[Any] = []

    def own[T](component: T) -> T:
        owned.append(component)
        return component

    if records is None:
        records = own(AirtableRecordStore(settings.airtable))
    if notifier is None:
        notifier = own(TelegramNotifier(settings.telegram))
    if rooms is None:
        rooms = own(RealtimeRooms(settings.realtime))
    if verifier is None:
        verifier = own(W.TurnstileVerifier(settings.guards.turnstile_secret))

    engine: AsyncEngine | None = None
    if cache is None:
        if settings.idempotency_db_url:
            engine = I.make_engine(settings.idempotency_db_url)
            cache = I.SQLAlchemyStore(async_sessionmaker(engine, expire_on_commit=False), clock)
        else:
            cache = I.MemoryStore(clock)

    return Services(
        settings=settings,
        records=records,
        notifier=notifier,
        rooms=rooms,
        cache=cache,
        verifier=verifier,
        dispatch=DispatchService(
            records=records,
            notifier=notifier,
            rooms=rooms,
            cache=cache,
            cache_policy=settings.cache,
            clock=clock,
        ),
        payments=PaymentService(
            records=records,
            notifier=notifier,
            cache=cache,
            pricing=settings.pricing,
            cache_policy=settings.cache,
            tokens=settings.pay_tokens,
            clock=clock,
        ),
        engine=engine,
        owned=owned,
    )


def create_app(
    settings: Settings | None = None,
    *,
    records: RecordStore | None = None,
    notifier: Notifier | None = None,
    rooms: RoomOpener | None = None,
    cache: I.StoreAny | None = None,
    verifier: W.Verifier | None = None,
    clock: Clock = utcnow,
) -> fastapi.FastAPI:
    settings = settings or Settings.from_env(os.environ)
    services = build_services(
        settings,
        records=records,
        notifier=notifier,
        rooms=rooms,
        cache=cache,
        verifier=verifier,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(_: fastapi.FastAPI) -> AsyncIterator[None]:
        await services.startup()
        try:
            yield
        finally:
            await services.aclose()

    app = W.application("jobledger").mount(
        endpoints(services.runner(), settings.guards, services.verifier)
    )
    fapp = W.contrib.fastapi.from_application(
        app,
        cors_origins=settings.guards.allowed_origins,
        lifespan=lifespan,
    )
    fapp.state.services = services
    return fapp


__all__ = ("Services", "build_services", "create_app")
