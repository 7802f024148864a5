"""
Device-local durable store.

Holds everything that must survive a page reload or an app restart while the
device has no connection: the offline count queue, the catalogue snapshot
and operator preferences. Single writer (this device), so SQLite is enough.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from taproom.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False):
    """Create an async engine for the local store."""
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(database_url, echo=echo, future=True, pool_pre_ping=True)


def build_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.LOCAL_DATABASE_URL, echo=settings.DEBUG)

# Create async session factory
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all local store models."""
    pass


async def init_db(bind=None) -> None:
    """Create local store tables if they do not exist yet."""
    # Import all models to register them with Base.metadata
    from taproom.models import local_store  # noqa: F401

    target = bind if bind is not None else engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Local store ready ({len(Base.metadata.tables)} tables)")
