from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from story_engine.storage.base import Base, import_all_models

_db_service: "DatabaseService | None" = None


class DatabaseService:
    """SQLite engine holding users and quota counters.

    Every connection enforces foreign keys, so deleting a user cascades to its quota
    rows and a quota write for an unknown user fails. ``busy_timeout_ms`` bounds how
    long a writer waits on another writer's lock.
    """

    def __init__(self, db_url: str, busy_timeout_ms: int = 5000):
        self.db_url = db_url
        self.busy_timeout_ms = max(int(busy_timeout_ms), 0)
        self.engine: AsyncEngine = create_async_engine(
            db_url,
            future=True,
            connect_args={"timeout": self.busy_timeout_ms / 1000},
        )
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)
        event.listen(self.engine.sync_engine, "connect", self._on_connect)

    def _on_connect(self, dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms};")
        finally:
            cursor.close()

    @classmethod
    def for_path(cls, db_path: Path, busy_timeout_ms: int = 5000) -> "DatabaseService":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite+aiosqlite:///{db_path.resolve().as_posix()}", busy_timeout_ms=busy_timeout_ms)

    async def init_models(self) -> None:
        import_all_models()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def with_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Read-only session; nothing is committed."""

        async with self._sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        await self.engine.dispose()


async def init_db_service(db_path: Path, busy_timeout_ms: int = 5000) -> DatabaseService:
    global _db_service
    if _db_service is None:
        service = DatabaseService.for_path(db_path, busy_timeout_ms=busy_timeout_ms)
        await service.init_models()
        logger.debug("Story database ready path={}", db_path)
        _db_service = service
    return _db_service


async def shutdown_db_service() -> None:
    global _db_service
    if _db_service is not None:
        await _db_service.dispose()
        _db_service = None


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Transaction on the process-wide service started by ``init_db_service``."""

    if _db_service is None:
        raise RuntimeError("Database service not initialized. Call init_db_service() first.")
    try:
        async with _db_service.transaction() as session:
            yield session
    except Exception:
        logger.exception("Story database transaction rolled back")
        raise
