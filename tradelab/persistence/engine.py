from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set in environment variables.")
    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory for the DB facade; the caller disposes the engine."""
    return async_sessionmaker(engine, expire_on_commit=False)
