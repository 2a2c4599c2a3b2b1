import logging
from typing import Any, AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import TimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from marketplace.infra.tracing import instrument_sqlalchemy
from marketplace.settings import settings

Base = declarative_base()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

logger = logging.getLogger(__name__)

# Driver messages that mean another writer holds the row or the file lock.
_CONTENTION_MARKERS = ("database is locked", "could not serialize access", "deadlock detected")


def engine_options(database_url: str) -> dict[str, Any]:
    backend = make_url(database_url).get_backend_name()
    if backend == "postgresql":
        return {
            "pool_pre_ping": True,
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_timeout": settings.database_pool_timeout_seconds,
            "connect_args": {
                "options": f"-c statement_timeout={int(settings.database_statement_timeout_ms)}",
            },
        }
    if backend == "sqlite":
        # Competing slot claims wait on the file lock instead of failing at once.
        return {"connect_args": {"timeout": settings.database_busy_timeout_seconds}}
    return {"pool_pre_ping": True}


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _engine, _session_factory
    if _session_factory is None:
        _engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
        _log_engine_errors(_engine)
        instrument_sqlalchemy(_engine.sync_engine)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False, class_=AsyncSession)
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    session_factory = _get_session_factory()
    try:
        async with session_factory() as session:
            yield session
    except TimeoutError as exc:
        logger.warning("db_pool_timeout", exc_info=exc)
        raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _get_session_factory()


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def _log_engine_errors(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "handle_error")
    def receive_error(context):  # noqa: ANN001
        exc = context.original_exception or context.sqlalchemy_exception
        statement = str(context.statement)[:200] if context.statement else None
        if isinstance(exc, TimeoutError):
            logger.warning("db_pool_timeout", extra={"extra": {"operation": statement}})
            return
        message = str(exc).lower()
        if any(marker in message for marker in _CONTENTION_MARKERS):
            logger.warning("db_lock_contention", extra={"extra": {"operation": statement}})
