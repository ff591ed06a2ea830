from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from stockledger.core.config import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes are UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(database_url: str, **kwargs):
    engine = create_async_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine


engine = build_engine(settings.database_url, echo=settings.database_echo)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


def import_models() -> None:
    # Registers every mapped class on Base.metadata and the journal listeners.
    from stockledger.db import part, location  # noqa: F401
    from stockledger.db.inventory import stock, transaction  # noqa: F401
    from stockledger.db.immutability import register_immutability_listeners

    register_immutability_listeners()


async def create_db_and_tables(bind=None):
    import_models()
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def begin_write(session: AsyncSession, lock_timeout: Optional[float] = None) -> None:
    """Open a fresh transaction on ``session`` for a guarded write.

    Any read transaction left open on the session is committed first. SQLite
    has no row locks, so the database write lock is taken up front
    (``BEGIN IMMEDIATE``) and every read after it sees the latest commit. On
    PostgreSQL ``lock_timeout`` bounds how long row locks are waited for.
    """
    if session.in_transaction():
        await session.commit()
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        await session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql" and lock_timeout is not None:
        timeout_ms = max(int(lock_timeout * 1000), 1)
        await session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
