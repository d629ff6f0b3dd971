"""
Database Layer - Async SQLAlchemy engine + session factory.
"""
import os
import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from pipetrak.config import database_url

logger = logging.getLogger("pipetrak-db")

DATABASE_URL = database_url()


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    DATABASE_URL,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    echo=False,
    pool_timeout=5,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_schema(bind: AsyncEngine) -> None:
    """Create all tables on ``bind`` and seed the system progress templates."""
    from pipetrak.models import orm_models  # noqa: F401
    from pipetrak.services.component_store import seed_system_templates

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        seeded = await seed_system_templates(session)
        await session.commit()
    if seeded:
        logger.info("Seeded %d system progress templates.", seeded)


async def init_db():
    """Initialize DB tables. Skips in dev mode when no DATABASE_URL is set."""
    if not os.getenv("DATABASE_URL"):
        logger.warning("DATABASE_URL not set — skipping init_db() (dev mode)")
        return
    await create_schema(engine)
    logger.info("Database tables initialized.")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
