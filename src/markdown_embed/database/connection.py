"""Database engine for the page metadata store."""

from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from markdown_embed.config import Settings, get_settings
from markdown_embed.utils.logging import get_logger

logger = get_logger("database")


def get_database_url(settings: Optional[Settings] = None) -> str:
    """Get the database URL, converting to an async driver if needed."""
    settings = settings or get_settings()
    db_url = settings.database.url

    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif db_url.startswith("postgresql+psycopg2://"):
        db_url = db_url.replace("postgresql+psycopg2://", "postgresql+asyncpg://", 1)
    elif db_url.startswith("sqlite://"):
        db_url = db_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    return db_url


def create_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Create and configure the SQLAlchemy async engine."""
    settings = settings or get_settings()
    db_url = get_database_url(settings)

    engine_kwargs: Dict[str, Any] = {"echo": settings.database.echo}
    if not db_url.startswith("sqlite"):
        # SQLite uses a single-connection pool; sizing only applies to server databases
        engine_kwargs.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_timeout=settings.database.pool_timeout,
            pool_recycle=settings.database.pool_recycle,
            pool_pre_ping=True,
        )

    engine = create_async_engine(db_url, **engine_kwargs)
    logger.info(f"Database engine created: driver={engine.url.drivername}")
    return engine


async def check_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """Check that ``engine`` answers a trivial query; no engine means not connected."""
    if engine is None:
        return False
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            row = result.fetchone()
            return row is not None and row[0] == 1
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
