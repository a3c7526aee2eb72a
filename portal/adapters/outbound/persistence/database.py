# portal/adapters/outbound/persistence/database.py

import logging
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from portal.adapters.configuration.config import Settings

# Configure logger
logger = logging.getLogger(__name__)

# Parent class of every ORM model
Base = declarative_base()


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine; no connection is opened until first use."""
    database_url = str(settings.DATABASE_URL).replace("postgresql+psycopg2", "postgresql+asyncpg")
    logger.info(f"Connecting to database: {database_url.split('@')[-1]}")

    return create_async_engine(
        database_url,
        echo=False,
        pool_size=20,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Provides an async session that is committed on success,
    rolled back on error and always closed.

    Example:
        ```python
        async with session_scope(app.state.session_factory) as db:
            result = await db.execute(select(LogRecord))
        ```
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency injection for use with FastAPI.

    Example:
        ```python
        @router.get("/logs")
        async def list_logs(db: AsyncSession = Depends(get_db)):
            ...
        ```
    """
    async with session_scope(request.app.state.session_factory) as session:
        yield session


async def ping_database(session_factory: async_sessionmaker) -> bool:
    try:
        async with session_scope(session_factory) as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False
