from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from app.config import settings
from app.db.base import Base


def build_engine(database_url: str) -> AsyncEngine:
    """Create the async engine; pool sizing only applies to server databases."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False, future=True)
    return create_async_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create missing tables. Schema migrations are handled outside this service."""
    # Register the tables on Base.metadata
    import app.db.tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_sessionmaker(engine)
