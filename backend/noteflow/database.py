"""
NoteFlow Backend - Database Handle
====================================

What:  Async SQLAlchemy engine, session factory and FastAPI session dependency,
       owned by an explicit Database handle instead of import-time globals.
How:   Database(url) creates its engine lazily on first use. The app lifespan
       and the backfill CLI each own one handle and dispose() it on shutdown.
       Tests build a handle on sqlite+aiosqlite.

Connection Pooling (PostgreSQL only):
    pool_size / max_overflow / pool_pre_ping come from settings;
    pool_recycle=3600 drops connections older than an hour.
    SQLite URLs get no pool arguments.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all NoteFlow ORM models (shared metadata for Alembic)."""

    pass


class Database:
    """
    Owns the async engine and session factory for one database URL.

    Usage:
        db = Database(settings.database_url)
        async with db.session_factory() as session:
            ...
        await db.dispose()
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        echo: bool = False,
    ):
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_pre_ping = pool_pre_ping
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            echo=settings.log_level == "DEBUG",
        )

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            kwargs = {"echo": self.echo}
            if not self.url.startswith("sqlite"):
                kwargs.update(
                    pool_size=self.pool_size,
                    max_overflow=self.max_overflow,
                    pool_pre_ping=self.pool_pre_ping,
                    pool_recycle=3600,
                )
            self._engine = create_async_engine(self.url, **kwargs)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        # expire_on_commit=False: attributes stay readable after commit
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        FastAPI dependency: one session per request.

        Commits when the handler returns, rolls back on any exception and
        re-raises so the global handlers can respond.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def create_all(self) -> None:
        """Create every table from model metadata (tests and local SQLite only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close every pooled connection. Safe to call when the engine was never created."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
