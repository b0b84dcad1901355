"""Async SQLAlchemy engine and session creation."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from unibox.config import settings


def create_db_engine(url: str | None = None) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    SQLite gets foreign keys switched on so weak references (SET NULL) behave
    the same as on PostgreSQL.
    """
    db_url = url or settings.effective_database_url
    engine_kwargs: dict = {"echo": False}

    # SQLite does not support pool_size / max_overflow
    if "sqlite" not in db_url:
        engine_kwargs.update(pool_size=10, max_overflow=20, pool_pre_ping=True)
    else:
        engine_kwargs["connect_args"] = {"timeout": 30}

    engine = create_async_engine(db_url, **engine_kwargs)

    if "sqlite" in db_url:
        @event.listens_for(engine.sync_engine, "connect")
        def _configure_sqlite(dbapi_conn, _record):
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # IMMEDIATE takes the write lock up front: concurrent writers wait on the
        # busy timeout instead of failing on a lock upgrade
        @event.listens_for(engine.sync_engine, "begin")
        def _begin_sqlite(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables (local mode and tests; no migrations)."""
    from unibox.db.base import Base
    import unibox.db.models  # noqa: F401  register all ORM models

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
