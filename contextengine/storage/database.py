"""Async database access shared by the store, slow cache tier and analytics."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from contextengine.storage.models import Base

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """The durable store could not be reached or failed a query."""
    pass


class Database:
    """
    Async SQLAlchemy engine wrapper.

    Writes are serialized through a single asyncio lock, which keeps SQLite
    from raising "database is locked" under concurrent requests.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self._ensure_sqlite_directory(url)
        self.engine = create_async_engine(url, echo=echo)
        self.async_session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self._write_lock = asyncio.Lock()
        self._initialized = False

    @staticmethod
    def _ensure_sqlite_directory(url: str) -> None:
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    async def init_db(self) -> None:
        """Create tables if they don't exist."""
        if self._initialized:
            return
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to initialize database: {e}") from e
        self._initialized = True
        logger.info(f"Context database ready ({make_url(self.url).get_backend_name()})")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read session; SQLAlchemy errors surface as StoreUnavailableError."""
        try:
            async with self.async_session() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreUnavailableError(str(e)) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Serialized write transaction; commits on success, rolls back otherwise."""
        async with self._write_lock:
            try:
                async with self.async_session() as session:
                    async with session.begin():
                        yield session
            except SQLAlchemyError as e:
                raise StoreUnavailableError(str(e)) from e

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Context database connection closed")
