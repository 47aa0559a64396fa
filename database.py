"""
Database Connection
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from config import get_settings
from models import Base

settings = get_settings()


def _engine_options(url: str) -> dict:
    # SQLite (tests, local demos) does not accept pool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
        "echo": False,
    }


# Create async engine
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# Async session factory
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


def make_session_factory(url: str):
    """Build an engine + session factory pair for an explicit URL (tests, scripts)."""
    custom_engine = create_async_engine(url, **_engine_options(url))
    factory = sessionmaker(
        custom_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )
    return custom_engine, factory


async def init_db(target_engine=None):
    """Create all tables."""
    async with (target_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """Dependency for getting DB session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
