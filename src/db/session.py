"""Async engine and session factory construction.

Both are built once by the application lifespan and passed to the
services that need them; nothing here is a process-wide singleton.

Usage::

    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    async with session_factory() as session, session.begin():
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.base import Base

if TYPE_CHECKING:
    from config.settings import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def _mask_password(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)


def create_engine_for_url(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine, with SQLite tweaks for local and test use."""
    backend = make_url(url).get_backend_name()
    kwargs: dict = {"echo": echo}

    if backend == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            # One shared connection, otherwise each checkout sees an empty DB
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_async_engine(url, **kwargs)

    if backend == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:  # noqa: ANN001
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.info("db.engine_created", url=_mask_password(url), backend=backend)
    return engine


def build_engine(settings: Settings) -> AsyncEngine:
    return create_engine_for_url(settings.async_database_url, echo=settings.database_echo)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    import src.db.tables  # noqa: F401  (registers the models on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db.tables_created", tables=sorted(Base.metadata.tables))
