from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the depot database."""
    options: dict = {"echo": echo, "future": True, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options["pool_timeout"] = settings.DATABASE_POOL_TIMEOUT
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


# Create Async Engine
engine = build_engine(settings.DATABASE_URL, echo=settings.LOG_LEVEL == "DEBUG")


class Base(DeclarativeBase):
    pass


async def create_schema(bind: AsyncEngine) -> None:
    """Create all tables registered on Base. Production schemas come from Alembic."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
