"""Async engine, session factory and the declarative base for all models."""
import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from payoova.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
)

# Rows stay readable after commit; the send flow and the monitor use them afterwards
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Routes and services commit explicitly; anything left is rolled back on close."""
    async with async_session_maker() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()
    logger.info("Database connections closed")
