"""
SQLAlchemy store — durable idempotency records in one table.

Usage:
    session_factory, engine = await create_database("sqlite+aiosqlite:///idem.db")
    store = SQLAlchemyStore(session_factory)

    executor = I.idempotent(op).key(...).store(store).build()

Values must be JSON-serializable (dicts, lists, strings, numbers). Services
cache plain dicts and rebuild their result types on replay.
"""

import json
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Float, String, Text, delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from kungfu import Result, Ok, Error

from jobledger._types import Clock, utcnow
from jobledger.idempotency._types import IdempotencyRecord, RecordState
from jobledger.idempotency._store import StoreError


# ═══════════════════════════════════════════════════════════════════════════════
# Table
# ═══════════════════════════════════════════════════════════════════════════════

class Base(DeclarativeBase):
    pass


class IdempotencyRow(Base):
    """
    One cached operation result.

    Note: Timestamps are UTC epoch seconds so comparisons do not depend on
    the backend's timezone handling.
    """
    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    value_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    input_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyStore:
    """
    Idempotency store over an async SQLAlchemy session factory.

    set_pending is an INSERT on the primary key; a duplicate live key
    surfaces as IntegrityError and is reported as Ok(False).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> float:
        return self._clock().timestamp()

    def _expiry(self, ttl: timedelta | None) -> float | None:
        return self._now() + ttl.total_seconds() if ttl else None

    def _is_live(self, row: IdempotencyRow) -> bool:
        return row.expires_at is None or self._now() < row.expires_at

    async def get(self, key: str) -> Result[IdempotencyRecord[Any] | None, StoreError]:
        try:
            async with self._session_factory() as session:
                row = await session.get(IdempotencyRow, key)
                if row is None or not self._is_live(row):
                    return Ok(None)
                return Ok(_to_record(row))
        except SQLAlchemyError as e:
            return Error(StoreError(f"Failed to get: {e}", e))

    async def set_pending(
        self,
        key: str,
        ttl: timedelta | None,
        input_hash: str | None = None,
    ) -> Result[bool, StoreError]:
        try:
            async with self._session_factory() as session:
                existing = await session.get(IdempotencyRow, key)
                if existing is not None:
                    if self._is_live(existing):
                        return Ok(False)
                    await session.delete(existing)
                    await session.flush()

                session.add(
                    IdempotencyRow(
                        key=key,
                        state=RecordState.PENDING.value,
                        input_hash=input_hash,
                        created_at=self._now(),
                        expires_at=self._expiry(ttl),
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return Ok(False)
                return Ok(True)
        except SQLAlchemyError as e:
            return Error(StoreError(f"Failed to set pending: {e}", e))

    async def set_completed(
        self,
        key: str,
        value: Any,
        ttl: timedelta | None,
    ) -> Result[None, StoreError]:
        try:
            value_json = json.dumps(value)
        except (TypeError, ValueError) as e:
            return Error(StoreError(f"Value is not JSON-serializable: {e}", e))
        return await self._settle(key, RecordState.COMPLETED, ttl, value_json=value_json)

    async def delete(self, key: str) -> Result[bool, StoreError]:
        try:
            async with self._session_factory() as session:
                cursor = await session.execute(
                    delete(IdempotencyRow).where(IdempotencyRow.key == key)
                )
                await session.commit()
                return Ok(bool(getattr(cursor, "rowcount", 0)))
        except SQLAlchemyError as e:
            return Error(StoreError(f"Failed to delete: {e}", e))

    async def purge_expired(self) -> Result[int, StoreError]:
        """Delete every expired row. Returns the number removed."""
        try:
            async with self._session_factory() as session:
                rows = (
                    await session.execute(
                        select(IdempotencyRow).where(
                            IdempotencyRow.expires_at.is_not(None),
                            IdempotencyRow.expires_at <= self._now(),
                        )
                    )
                ).scalars().all()
                for row in rows:
                    await session.delete(row)
                await session.commit()
                return Ok(len(rows))
        except SQLAlchemyError as e:
            return Error(StoreError(f"Failed to purge: {e}", e))

    async def _settle(
        self,
        key: str,
        state: RecordState,
        ttl: timedelta | None,
        *,
        value_json: str | None = None,
    ) -> Result[None, StoreError]:
        try:
            async with self._session_factory() as session:
                row = await session.get(IdempotencyRow, key)
                if row is None:
                    return Error(StoreError(f"No pending record for key: {key}"))

                row.state = state.value
                row.value_json = value_json
                row.expires_at = self._expiry(ttl)
                await session.commit()
                return Ok(None)
        except SQLAlchemyError as e:
            return Error(StoreError(f"Failed to store {state.value}: {e}", e))


def _to_record(row: IdempotencyRow) -> IdempotencyRecord[Any]:
    return IdempotencyRecord(
        key=row.key,
        state=RecordState(row.state),
        value=json.loads(row.value_json) if row.value_json is not None else None,
        created_at=datetime.fromtimestamp(row.created_at, UTC),
        expires_at=(
            datetime.fromtimestamp(row.expires_at, UTC) if row.expires_at is not None else None
        ),
        input_hash=row.input_hash,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════

def make_engine(url: str = "sqlite+aiosqlite:///:memory:") -> AsyncEngine:
    if url.endswith(":memory:"):
        # One shared connection, otherwise every session sees an empty database.
        engine = create_async_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(url, echo=False)
    return engine


async def init_schema(engine: AsyncEngine) -> None:
    """Create the idempotency table if it does not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create the idempotency table and return (session_factory, engine)."""
    engine = make_engine(url)
    await init_schema(engine)
    return async_sessionmaker(engine, expire_on_commit=False), engine


__all__ = (
    "IdempotencyRow",
    "SQLAlchemyStore",
    "make_engine",
    "init_schema",
    "create_database",
)
