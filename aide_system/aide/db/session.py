"""
Database engine and sessions.

One async engine per process; request handlers and background jobs each
open their own AsyncSession from SessionLocal.
"""


from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from aide.core.config import settings
from aide.db.base import Base
from aide.db import models  # noqa: F401


def make_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    connect_args = {"timeout": settings.DB_BUSY_TIMEOUT_SECONDS} if url.startswith("sqlite") else {}
    return create_async_engine(url, echo=settings.DB_ECHO, connect_args=connect_args)


engine = make_engine()
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_db(bind: AsyncEngine | None = None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as db:
        yield db
