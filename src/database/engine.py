from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create the async engine; pool and timeout options only apply to PostgreSQL."""
    url = url or settings.database_url
    kwargs: dict = {"echo": settings.database_echo}
    if url.startswith("postgresql"):
        kwargs.update(
            pool_size=20,
            pool_pre_ping=True,
            pool_recycle=3600,
            max_overflow=5,
            connect_args={"command_timeout": settings.database_command_timeout_seconds},
        )
    return create_async_engine(url, **kwargs)


engine = build_engine()

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
