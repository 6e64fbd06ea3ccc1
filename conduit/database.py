import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from fastapi import Request
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from conduit.config import Settings
from conduit.middleware import install_query_counter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Serialization failure and deadlock (PostgreSQL SQLSTATE codes).
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})

DEFAULT_MAX_ATTEMPTS = 5


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, stamped by the service inside the transaction."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine described by *settings* and register the
    per-request query counter on it.

    In-memory SQLite URLs get a ``StaticPool`` because an in-memory
    database only lives as long as its single connection.
    """
    kwargs: dict = {"echo": settings.DEBUG}
    if settings.DATABASE_URL.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in settings.DATABASE_URL:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    if settings.DATABASE_ISOLATION_LEVEL:
        kwargs["isolation_level"] = settings.DATABASE_ISOLATION_LEVEL

    engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    install_query_counter(engine)
    return engine


def build_session_factory(engine: AsyncEngine, settings: Settings) -> async_sessionmaker[AsyncSession]:
    # ``info`` travels with every session so run_transaction can read the
    # retry budget without reaching for global settings.
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        info={"transaction_max_attempts": settings.TRANSACTION_MAX_ATTEMPTS},
    )


async def create_tables(engine: AsyncEngine) -> None:
    # Import models so every table is registered on Base.metadata.
    import conduit.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request):
    async with request.app.state.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def is_retryable(exc: DBAPIError) -> bool:
    """
    Return True when *exc* signals a write conflict that a fresh attempt
    of the same unit of work can resolve.

    Unique-index violations count as conflicts: the uniqueness checks run
    inside the transaction, so a re-run observes the competing row and
    raises the proper domain error instead.
    """
    if isinstance(exc, IntegrityError):
        return True
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(orig)


async def run_transaction(db: AsyncSession, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """
    Run ``work(db)`` and commit, restarting from scratch on a write conflict.

    *work* must re-read every row it depends on; anything loaded before a
    rollback is stale.  Domain errors raised by *work* are not database
    errors and propagate on the first attempt.
    """
    max_attempts = db.info.get("transaction_max_attempts", DEFAULT_MAX_ATTEMPTS)
    attempt = 1
    while True:
        try:
            result = await work(db)
            await db.commit()
            return result
        except DBAPIError as exc:
            await db.rollback()
            if not is_retryable(exc) or attempt >= max_attempts:
                raise
            logger.warning(
                "Transaction conflict (attempt %d/%d), retrying: %s",
                attempt,
                max_attempts,
                exc.orig,
            )
            attempt += 1
