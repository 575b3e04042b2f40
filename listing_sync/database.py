# listing_sync/database.py

from contextlib import asynccontextmanager
from typing import Optional
import os

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from listing_sync.core.config import get_settings

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def normalize_database_url(database_url: str) -> str:
    # Convert postgresql:// to postgresql+asyncpg:// for async support
    if database_url.startswith('postgres://'):
        return database_url.replace('postgres://', 'postgresql+asyncpg://', 1)
    if database_url.startswith('postgresql://'):
        return database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return database_url


def get_engine() -> AsyncEngine:
    global _engine

    if _engine is None:
        settings = get_settings()
        # Use environment variable directly if settings is empty
        database_url = settings.DATABASE_URL or os.environ.get('DATABASE_URL', '')
        if not database_url:
            raise ValueError("DATABASE_URL is not set in environment variables")

        database_url = normalize_database_url(database_url)
        engine_kwargs = {"echo": False, "future": True}
        if database_url.startswith("postgresql"):
            engine_kwargs.update(
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_recycle=1800,
            )
        _engine = create_async_engine(database_url, **engine_kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False
        )
    return _session_factory


def async_session() -> AsyncSession:
    return get_session_factory()()


@asynccontextmanager
async def session_scope():
    session = async_session()
    try:
        yield session
    finally:
        await session.close()


async def get_session():
    """FastAPI dependency yielding a session per request"""
    async with session_scope() as session:
        yield session
