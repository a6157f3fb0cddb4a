"""
LMS Assessment Engine - Database Configuration
Async SQLAlchemy engine and session management
"""
from collections.abc import AsyncGenerator
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from lms_assessment.core.config import settings


def _engine_options(url: str) -> dict:
    # SQLite pools reject sizing arguments
    if url.startswith("sqlite"):
        return {"echo": settings.DEBUG}
    return {
        "echo": settings.DEBUG,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    **_engine_options(settings.DATABASE_URL),
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def str_enum(enum_cls: type[Enum], length: int = 30) -> SAEnum:
    """Store enum values as plain strings on every backend."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda e: [m.value for m in e],
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.
    
    The session commits when the request handler returns and rolls back
    when it raises, so a failed operation leaves no partial writes.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Initialize database tables."""
    # Register every mapped class on the metadata before create_all
    import lms_assessment.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
