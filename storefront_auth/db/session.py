"""Async engine and session factory shared by the request handlers."""

from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront_auth.core.config import settings


def _normalize_database_url(url: str) -> str:
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        # Writers queue on SQLite's file lock instead of failing immediately.
        return {"connect_args": {"timeout": 15}}
    return {"pool_pre_ping": True}


database_url = _normalize_database_url(settings.DATABASE_URL)
engine = create_async_engine(database_url, echo=False, **_engine_options(database_url))
async_session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session
