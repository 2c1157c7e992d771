import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from policywatch.config import settings

logger = logging.getLogger(__name__)


def engine_options(url: str) -> Dict[str, Any]:
    """Pooling for PostgreSQL; SQLite (local runs and tests) gets none of the pool knobs."""
    if url.startswith("sqlite"):
        # Background stages reuse the connection from another task
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
    }


engine = create_async_engine(
    settings.SQLALCHEMY_DATABASE_URI,
    echo=settings.DB_ECHO,
    **engine_options(settings.SQLALCHEMY_DATABASE_URI),
)
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """Request-scoped session. Work left uncommitted by a failing handler is rolled back."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            logger.debug("Rolling back request session after handler error")
            await session.rollback()
            raise
