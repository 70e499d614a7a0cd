import logging

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from points_service.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def to_async_url(database_url: str) -> str:
    """Rewrite a plain PostgreSQL URL to the asyncpg driver."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def build_engine(database_url: str):
    """Create the async engine; pool sizing only applies to server databases."""
    url = to_async_url(database_url)
    kwargs = {"echo": settings.DB_ECHO}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.DB_POOL_SIZE
        kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
    return create_async_engine(url, **kwargs)


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Declarative base for ORM models
Base = declarative_base()


async def get_db() -> AsyncSession:
    """
    Request-scoped database session.
    Usage: db: AsyncSession = Depends(get_db)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """
    Dependency returning the session factory.

    The apply-behavior orchestrator opens one session per student, so it needs
    the factory rather than a single request-scoped session.
    """
    return AsyncSessionLocal


async def init_db():
    """Create all tables (idempotent, create_all skips existing tables)."""
    from points_service import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")
    except Exception as e:
        # Don't crash the service if the database is not reachable yet
        logger.error(f"Could not initialize database: {e}", exc_info=True)


async def close_db():
    """Dispose the engine connection pool."""
    try:
        await engine.dispose()
    except Exception as e:
        logger.warning(f"Could not dispose database engine: {e}")
