from src.modules.chatbot.stores.base import SessionStore
from src.modules.chatbot.stores.memory import MemorySessionStore
from src.modules.chatbot.stores.sql import SqlSessionStore

__all__ = ["MemorySessionStore", "SessionStore", "SqlSessionStore"]
