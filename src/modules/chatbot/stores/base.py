"""Abstract base class for chat session storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from src.models.chat_session import ChatSession
from src.modules.chatbot.schemas import SessionStatistics


class SessionStore(ABC):
    """Durable CRUD for chat sessions.

    Implementations must guarantee that at most one session per ``user_id``
    has ``is_active`` set, raising ``DuplicateSessionError`` from ``create``
    when a concurrent writer already holds the active slot.
    """

    @abstractmethod
    async def find_active_by_user(self, user_id: str) -> ChatSession | None:
        """Return the user's active session, or None."""

    @abstractmethod
    async def create(self, session: ChatSession) -> ChatSession:
        """Insert a new session. Raises DuplicateSessionError on a lost race."""

    @abstractmethod
    async def save(self, session: ChatSession) -> ChatSession:
        """Persist ``context_data`` and ``is_active`` as a single update.

        Activity counters are only changed through ``touch`` so a concurrent
        turn is never overwritten by a stale copy.
        """

    @abstractmethod
    async def merge_context(self, session: ChatSession, partial: dict) -> ChatSession | None:
        """Overwrite only the keys in ``partial``, atomically against concurrent merges.

        Returns None when the session is no longer active.
        """

    @abstractmethod
    async def touch(self, session: ChatSession, now: datetime, ttl: timedelta) -> ChatSession | None:
        """Record one turn of activity: bump last_activity, expires_at and message_count.

        Returns None when the session is no longer active.
        """

    @abstractmethod
    async def mark_expired_inactive(self, now: datetime) -> int:
        """Deactivate every active session whose expires_at is before ``now``."""

    @abstractmethod
    async def aggregate_statistics(self, now: datetime) -> SessionStatistics:
        """Counts over all sessions; message averages cover active sessions only."""

    @abstractmethod
    async def list_active(self, limit: int = 100) -> list[ChatSession]:
        """Active sessions, most recently used first."""

    @abstractmethod
    async def list_by_user(self, user_id: str) -> list[ChatSession]:
        """Every session ever recorded for ``user_id``, most recent first."""

    async def close(self) -> None:
        """Release backend resources."""
