"""Database configuration and async session management."""

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from .config import Settings

# SQLSTATE codes PostgreSQL uses for errors that succeed when retried
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


class Base(DeclarativeBase):
    """Declarative base for all models."""


class Database:
    """
    Owns the async engine and session factory.

    One instance is created per application (or per test) and handed to the
    components that need it, instead of living at module level.
    """

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, future=True, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        if self.engine.dialect.name == "sqlite":
            self._use_immediate_transactions()

    def _use_immediate_transactions(self) -> None:
        """
        Make every SQLite transaction take the write lock when it begins.

        The driver otherwise defers BEGIN until the first write, which would
        let reads inside a transaction see rows another writer is changing.
        """
        sync_engine = self.engine.sync_engine

        @event.listens_for(sync_engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build a database handle, picking pool options suited to the driver."""
        url = settings.database_url
        if url.startswith("sqlite"):
            if ":memory:" in url:
                # A single shared connection keeps the in-memory schema alive
                return cls(
                    url,
                    echo=False,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            return cls(
                url,
                echo=False,
                poolclass=NullPool,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
        return cls(url, echo=settings.debug, pool_pre_ping=True)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def session(self) -> AsyncSession:
        """Open a new session; use as an async context manager."""
        return self.session_factory()

    async def create_all(self) -> None:
        """Create all tables (used in development and tests; production uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except DBAPIError:
            return False
        return True

    async def dispose(self) -> None:
        """Close database connections."""
        await self.engine.dispose()


def is_transient_error(exc: DBAPIError) -> bool:
    """
    Tell whether a driver error is worth retrying.

    Covers PostgreSQL serialization failures, deadlocks and lock timeouts, and
    SQLite's "database is locked" when the busy timeout runs out.
    """
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    message = str(orig).lower()
    return "database is locked" in message or "deadlock detected" in message
