from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from src.database.engine import async_session, build_engine, engine

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "async_session",
    "build_engine",
    "engine",
]
