"""
Database configuration and setup
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData

from app.config import get_database_url, get_settings

settings = get_settings()

# Global variables for engine and session factory
engine: AsyncEngine = None
AsyncSessionLocal: async_sessionmaker = None


def _create_engine(database_url: str) -> AsyncEngine:
    """Create a new database engine for the configured URL."""
    if database_url.startswith("postgresql+asyncpg://"):
        return create_async_engine(
            database_url,
            echo=settings.database_echo,
            future=True,
            pool_pre_ping=True,  # Validate connections before use
            pool_recycle=3600,   # Recycle connections every hour
            connect_args={
                "server_settings": {
                    "application_name": "video_lifecycle_api",
                }
            }
        )
    return create_async_engine(database_url, echo=settings.database_echo, future=True)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Build the session factory used by requests and job processors."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True
    )


def _initialize_database_components() -> None:
    """Initialize database engine and session factory."""
    global engine, AsyncSessionLocal

    engine = _create_engine(get_database_url(async_driver=True))
    AsyncSessionLocal = create_session_factory(engine)


# Initialize on module import
_initialize_database_components()


class Base(DeclarativeBase):
    """Base class for all database models."""
    metadata = MetaData()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    Yields:
        AsyncSession: Database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            # Only commit if there are pending changes
            if session.dirty or session.new or session.deleted:
                await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_database() -> None:
    """Initialize database tables."""
    # Import models so their tables are registered on the metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Close database connections."""
    await engine.dispose()
