"""
semcache - Metrics Database Manager

Async SQLite engine and session management for persisted metrics.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .db_models import Base

IN_MEMORY = ":memory:"


class MetricsDatabase:
    """
    Async SQLite database manager for metrics storage.

    ``db_path=":memory:"`` keeps everything in a single shared in-process
    connection, which is what the test suite uses.
    """

    def __init__(self, db_path: str = "./data/metrics.db"):
        """
        Initialize metrics database.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        if db_path == IN_MEMORY:
            self.db_path: Path | None = None
            self.db_url = "sqlite+aiosqlite:///:memory:"
            self.engine: AsyncEngine = create_async_engine(
                self.db_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.db_path = Path(db_path).resolve()
            self.db_url = f"sqlite+aiosqlite:///{self.db_path}"
            self.engine = create_async_engine(
                self.db_url,
                echo=False,
                connect_args={"check_same_thread": False},
            )

        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        self._initialized = False
        self._initialization_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Create the schema if it does not exist.

        Safe to call multiple times.
        """
        async with self._initialization_lock:
            if self._initialized:
                return

            if self.db_path is not None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._initialized = True

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session (context manager).

        Usage:
            async with db.get_session() as session:
                await session.execute(...)
                await session.commit()
        """
        if not self._initialized:
            await self.initialize()

        async with self.session_factory() as session:
            yield session

    async def close(self) -> None:
        """Close database connections gracefully."""
        await self.engine.dispose()
        self._initialized = False
