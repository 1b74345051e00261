"""Async database engine and session factory.

Provides a FastAPI dependency (`get_db`) that yields a request-scoped
async session. The session is committed on success and rolled back on
error, so a cancelled or failed request never leaves a half-written
artifact row behind.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jarvault.core.config import get_settings
from jarvault.db.models import Base

settings = get_settings()

_pool_options: dict = {}
if not settings.database_url.startswith("sqlite"):
    _pool_options = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 5,
        "pool_timeout": 15,
    }

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_pool_options,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_models() -> None:
    """Create any missing tables. Called from the app lifespan."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that provides a request-scoped DB session.

    Yields a session that auto-commits on success and rolls back on error.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
