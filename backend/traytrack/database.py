"""Database engine, session factory, base class and transaction helper.

  - Base          → every table (master data, tray documents, lineage)
  - get_db()      → FastAPI dependency yielding an AsyncSession
  - atomic(db)    → one serializable unit of work: commit on success,
                    rollback on error, driver errors translated so callers
                    can tell a retryable conflict from a real failure
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from traytrack.config import settings
from traytrack.middleware.exceptions import translate_db_error


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {"echo": settings.debug and settings.environment == "development"}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
            isolation_level=settings.transaction_isolation,
        )
    return kwargs


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a session; write paths commit through atomic()."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# ── Unit of work ────────────────────────────────────────────

async def _apply_transaction_limits(db: AsyncSession) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    # SET LOCAL only lasts until the enclosing transaction ends
    await db.execute(text(f"SET LOCAL lock_timeout = '{int(settings.lock_timeout_ms)}ms'"))
    await db.execute(
        text(f"SET LOCAL statement_timeout = '{int(settings.statement_timeout_ms)}ms'")
    )


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run the enclosed block as a single transaction.

    Nothing inside is committed unless the whole block succeeds.  Lock
    timeouts, serialization failures, deadlocks and identifier collisions
    surface as RetryableConflictError; anything else is re-raised as-is
    after rollback.
    """
    try:
        await _apply_transaction_limits(db)
        yield db
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        translated = translate_db_error(exc)
        if translated is exc:
            raise
        raise translated from exc
    except BaseException:
        # includes cancellation of an abandoned request
        await db.rollback()
        raise
