from typing import AsyncIterator

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from app.core.config import Settings, settings

logger = structlog.get_logger(__name__)


def create_engine_for(url: str, config: Settings = settings) -> AsyncEngine:
    """Build an async engine with pool options suited to the backend.

    An in-memory SQLite database lives inside one connection, so every session
    has to share it. Server databases get a bounded, pre-pinged pool.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        options = {"connect_args": {"check_same_thread": False}}
        if parsed.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return create_async_engine(url, echo=config.DB_ECHO, **options)

    return create_async_engine(
        url,
        echo=config.DB_ECHO,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=config.DB_POOL_RECYCLE_SECONDS,
    )


def session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Results stay readable after commit; services return them to the API layer
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine_for(settings.DATABASE_URL)
AsyncSessionLocal = session_factory(engine)

Base = declarative_base()


async def init_db():
    """Register every model and check the database answers."""
    import app.models  # noqa: F401

    url = engine.url.render_as_string(hide_password=True)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database unreachable", url=url, exc_info=e)
        raise

    logger.info("Database connection initialized", url=url, dialect=engine.dialect.name)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session, rolled back when the request fails."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Database session error", exc_info=e)
            raise
        except Exception:
            await session.rollback()
            raise
