from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from devconnect.core.config import settings
from devconnect.core.logger import get_logger

logger = get_logger(__name__)


Base = declarative_base()


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

logger.info("Async SQLAlchemy engine created (echo=%s)", settings.DEBUG)


async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_models() -> None:
    """
    Create all tables known to the declarative Base.
    """
    # models must be imported so their tables are registered on Base.metadata
    from devconnect import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def get_db():
    """
    Provide an async SQLAlchemy session for each request.
    """
    logger.debug("Opening async DB session")
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            logger.debug("Async DB session closed")
