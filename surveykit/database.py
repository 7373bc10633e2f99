# surveykit/database.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import Conflict, StoreUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite") and (
        ":memory:" in database_url or database_url.rstrip("/").endswith(":")
    )


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Build the async engine for ``database_url``.

    In-memory SQLite gets a single shared connection, otherwise every new
    connection would see its own empty database.
    """
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    if _is_memory_sqlite(database_url):
        kwargs["poolclass"] = StaticPool
    return create_async_engine(database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    # expire_on_commit=False keeps loaded rows readable after the transaction
    return sessionmaker(
        bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )


async def create_db_and_tables(engine: AsyncEngine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


@asynccontextmanager
async def transaction(session_factory: sessionmaker) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit on success, roll back on any exception.

    Store errors leave here as ``Conflict`` or ``StoreUnavailable``; the
    original exception is logged and chained but never put in the message.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield session
        except IntegrityError as e:
            logger.warning("Integrity violation, transaction rolled back: %s", e.orig)
            raise Conflict(
                "The change conflicts with a concurrent write, please retry."
            ) from e
        except SQLAlchemyError as e:
            logger.exception("Data store call failed, transaction rolled back")
            raise StoreUnavailable(
                "The data store is currently unavailable, please retry."
            ) from e
