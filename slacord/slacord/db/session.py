from __future__ import annotations

from typing import AsyncIterator

import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .base import Base
from . import models  # noqa: F401


_engine: AsyncEngine | None = None
_Session: async_sessionmaker[AsyncSession] | None = None
_init_lock = asyncio.Lock()
_DEBUG_SQL = os.getenv("SLACORD_DEBUG_SQLALCHEMY", "").lower() in {"1", "true", "yes"}


def mask_url(url: str) -> str:
    return re.sub(r":[^:@/]+@", ":***@", url)


def _sync_url(url: str) -> str:
    """Convert an async SQLAlchemy URL to its sync counterpart.

    Alembic's migration runner uses synchronous engines, so async drivers are
    swapped for their synchronous equivalents.
    """

    sa_url = make_url(url)
    driver = sa_url.drivername
    if driver.endswith("+aiosqlite"):
        driver = driver[: -len("+aiosqlite")]
    elif driver.endswith("+aiomysql"):
        driver = driver[: -len("+aiomysql")] + "+pymysql"
    return sa_url.set(drivername=driver).render_as_string(hide_password=False)


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    # SQLite ignores ON DELETE clauses unless the pragma is set per connection.
    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragma(dbapi_connection, _record) -> None:  # pragma: no cover - driver hook
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async def init_db(url: str) -> AsyncEngine:
    """Create the database engine and bring the schema up to date."""

    global _engine, _Session
    if _engine is not None:
        return _engine

    async with _init_lock:
        if _engine is not None:
            return _engine

        sa_url = make_url(url)
        sync_url = _sync_url(url)
        logging.debug(
            "init_db async_url=%s sync_url=%s",
            mask_url(str(sa_url)),
            mask_url(sync_url),
        )

        if sa_url.get_backend_name() == "sqlite":
            # Tests and local development create the schema from metadata.
            engine = create_async_engine(url, echo=_DEBUG_SQL, future=True)
            _enable_sqlite_foreign_keys(engine)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            _engine = engine
            _Session = async_sessionmaker(_engine, expire_on_commit=False)
            return _engine

        config = Config()
        config.set_main_option(
            "script_location", str(Path(__file__).resolve().parent / "migrations")
        )
        config.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
        try:
            await asyncio.to_thread(command.upgrade, config, "head")
        except OperationalError as exc:  # pragma: no cover - requires real DB
            logging.error(
                "Migration failed for %s:%s as %s: %s",
                sa_url.host,
                sa_url.port,
                sa_url.username,
                exc,
            )
            raise

        _engine = create_async_engine(url, echo=_DEBUG_SQL, future=True, pool_pre_ping=True)
        _Session = async_sessionmaker(_engine, expire_on_commit=False)
        return _engine


async def close_db() -> None:
    """Dispose of the engine so a later ``init_db`` starts from scratch."""

    global _engine, _Session
    async with _init_lock:
        if _engine is not None:
            await _engine.dispose()
        _engine = None
        _Session = None


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    if _Session is None:
        raise RuntimeError("Engine not initialized")
    async with _Session() as session:
        yield session
