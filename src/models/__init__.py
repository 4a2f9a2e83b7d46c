# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.chat_session import ChatSession

__all__ = ["ChatSession"]
