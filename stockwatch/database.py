from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from stockwatch.config import settings


def _engine_options(url: str) -> dict:
    options: dict = {"echo": False, "pool_pre_ping": True}
    # SQLite (dev and tests) runs without a sized connection pool
    if not url.startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    return options


def make_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.database_url
    return create_async_engine(url, **_engine_options(url))


engine = make_engine()

# Shared by API requests and the dispatch cycle's SqlTargetStore
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on any error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    await engine.dispose()
