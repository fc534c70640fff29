"""Key/value slot backends for client-side session persistence."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol, cast, runtime_checkable

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from pathlib import Path

    class _DBAPICursor(Protocol):
        def execute(self, statement: str) -> object: ...

        def close(self) -> None: ...

    class _DBAPIConnection(Protocol):
        def cursor(self) -> _DBAPICursor: ...


SQLITE_PRAGMA_STATEMENTS: tuple[str, ...] = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA busy_timeout=5000;",
)

SessionFactory = async_sessionmaker[AsyncSession]


@runtime_checkable
class SlotStorage(Protocol):
    """Async string slot store keyed by slot name."""

    async def get_item(self, key: str) -> str | None:
        """Return stored value or None when the slot is empty."""
        ...

    async def set_item(self, key: str, value: str) -> None:
        """Overwrite one slot."""
        ...

    async def remove_item(self, key: str) -> None:
        """Remove one slot; missing slots are ignored."""
        ...


class MemorySlotStorage:
    """Process-local slot storage, used by tests and ephemeral consumers."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        """Start from a copy of `initial` slots, if any."""
        self.slots: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        """Return the slot value or None."""
        return self.slots.get(key)

    async def set_item(self, key: str, value: str) -> None:
        """Overwrite one slot."""
        self.slots[key] = value

    async def remove_item(self, key: str) -> None:
        """Remove one slot if present."""
        _ = self.slots.pop(key, None)


class SqliteSlotStorage:
    """Durable slot storage backed by one SQLite table via async SQLAlchemy."""

    _engine: AsyncEngine
    _session_factory: SessionFactory
    _schema_ready: bool
    _schema_lock: asyncio.Lock

    def __init__(self, *, engine: AsyncEngine) -> None:
        """Bind storage to an engine; the slot table is created on first use."""
        self._engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    @classmethod
    def open(cls, db_path: Path) -> SqliteSlotStorage:
        """Create storage for a SQLite file, installing connection PRAGMAs."""
        engine = create_async_engine(
            build_sqlite_url(db_path),
            pool_pre_ping=True,
        )
        _install_sqlite_pragma_handler(engine)
        return cls(engine=engine)

    async def get_item(self, key: str) -> str | None:
        """Return the slot value or None when no row exists."""
        await self._ensure_schema()
        statement = text(
            """
            SELECT slot_value
            FROM session_slots
            WHERE slot_key = :slot_key
            """,
        )
        async with self._session_factory() as session:
            result = await session.execute(statement, {"slot_key": key})
            value = result.scalar_one_or_none()
        if value is None:
            return None
        return str(value)

    async def set_item(self, key: str, value: str) -> None:
        """Upsert one slot row and stamp its update time."""
        await self._ensure_schema()
        statement = text(
            """
            INSERT INTO session_slots (slot_key, slot_value)
            VALUES (:slot_key, :slot_value)
            ON CONFLICT(slot_key) DO UPDATE
            SET slot_value = excluded.slot_value,
                updated_at = CURRENT_TIMESTAMP
            """,
        )
        async with self._session_factory() as session:
            _ = await session.execute(
                statement,
                {"slot_key": key, "slot_value": value},
            )
            await session.commit()

    async def remove_item(self, key: str) -> None:
        """Delete one slot row; missing rows are ignored."""
        await self._ensure_schema()
        statement = text("DELETE FROM session_slots WHERE slot_key = :slot_key")
        async with self._session_factory() as session:
            _ = await session.execute(statement, {"slot_key": key})
            await session.commit()

    @property
    def engine(self) -> AsyncEngine:
        """Expose the bound engine."""
        return self._engine

    async def dispose(self) -> None:
        """Release pooled connections held by the engine."""
        await self._engine.dispose()

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        statement = text(
            """
            CREATE TABLE IF NOT EXISTS session_slots (
                slot_key TEXT PRIMARY KEY,
                slot_value TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """,
        )
        async with self._schema_lock:
            if self._schema_ready:
                return
            async with self._session_factory() as session:
                _ = await session.execute(statement)
                await session.commit()
            self._schema_ready = True


def build_sqlite_url(db_path: Path) -> str:
    """Build SQLAlchemy async SQLite URL for a slot database file."""
    normalized_path = db_path.expanduser()
    return f"sqlite+aiosqlite:///{normalized_path.as_posix()}"


def _install_sqlite_pragma_handler(engine: AsyncEngine) -> None:
    """Apply SQLite PRAGMAs on each fresh connection."""

    def _set_sqlite_pragmas(
        dbapi_connection: object,
        connection_record: object,
    ) -> None:
        _ = connection_record
        connection = cast("_DBAPIConnection", dbapi_connection)
        cursor = connection.cursor()
        try:
            for statement in SQLITE_PRAGMA_STATEMENTS:
                _ = cursor.execute(statement)
        finally:
            cursor.close()

    event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
