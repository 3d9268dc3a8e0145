"""
Async engine and session factory.

Route handlers take a request-scoped session from get_db(). The booking core
takes the session factory itself, because every commit runs in a transaction
it opens and closes on its own.
"""

from contextlib import contextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings
from app.core.exceptions import StoreFailure
from app.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


def _engine_options() -> dict:
    if settings.is_sqlite:
        return {}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, **_engine_options())
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker:
    return SessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Commits when the handler returns cleanly."""
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    await engine.dispose()


@contextmanager
def store_errors(operation: str):
    """Surface driver/ORM failures as StoreFailure. Rejections pass through untouched."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("store_failure", operation=operation, error=str(e))
        raise StoreFailure(f"Booking store unavailable during {operation}") from e
