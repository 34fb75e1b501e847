"""
Database engine and session management
"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url
from typing import AsyncGenerator

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """Make sure the URL uses an async driver"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"Unsupported database driver: {drivername}. Use an async driver or update DATABASE__URL")

    async_driver = driver_map[drivername]
    return str(url.set(drivername=async_driver))


def _engine_options(database_url: str) -> dict:
    options = {"echo": settings.database.echo, "future": True}
    if not make_url(database_url).drivername.startswith("sqlite"):
        options["pool_size"] = settings.database.pool_size
        options["pool_pre_ping"] = True
    return options


_database_url = _build_async_url(settings.database.url)
engine = create_async_engine(_database_url, **_engine_options(_database_url))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; the caller controls the transaction"""
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables():
    """Create every table known to the model metadata"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables():
    """
    Drop every table.

    Test environments only: all data is lost!
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
