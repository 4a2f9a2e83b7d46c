"""Process-local session store for development and tests."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

from src.exceptions import DuplicateSessionError, NoActiveSessionError
from src.models.chat_session import ChatSession
from src.modules.chatbot.schemas import SessionStatistics
from src.modules.chatbot.stores.base import SessionStore

_COLUMNS = [column.key for column in ChatSession.__table__.columns]


def _copy(session: ChatSession) -> ChatSession:
    values = {key: getattr(session, key) for key in _COLUMNS}
    values["context_data"] = dict(values.get("context_data") or {})
    return ChatSession(**values)


class MemorySessionStore(SessionStore):
    """Keeps sessions in a dict keyed by row id.

    Every operation holds a single asyncio.Lock, so each call is atomic with
    respect to the others. Callers always receive copies.
    """

    def __init__(self) -> None:
        self._rows: dict = {}
        self._lock = asyncio.Lock()

    def _active_for(self, user_id: str) -> ChatSession | None:
        for row in self._rows.values():
            if row.user_id == user_id and row.is_active:
                return row
        return None

    async def find_active_by_user(self, user_id: str) -> ChatSession | None:
        async with self._lock:
            row = self._active_for(user_id)
            return _copy(row) if row is not None else None

    async def create(self, session: ChatSession) -> ChatSession:
        async with self._lock:
            if session.is_active and self._active_for(session.user_id) is not None:
                raise DuplicateSessionError(
                    f"An active session already exists for user {session.user_id}"
                )
            now = datetime.now(UTC)
            row = _copy(session)
            row.id = row.id or uuid.uuid4()
            row.created_at = row.created_at or now
            row.updated_at = now
            self._rows[row.id] = row
            return _copy(row)

    async def save(self, session: ChatSession) -> ChatSession:
        async with self._lock:
            row = self._rows.get(session.id)
            if row is None:
                raise NoActiveSessionError(f"Session {session.session_id} no longer exists")
            row.context_data = dict(session.context_data or {})
            row.is_active = session.is_active
            row.updated_at = datetime.now(UTC)
            return _copy(row)

    async def merge_context(self, session: ChatSession, partial: dict) -> ChatSession | None:
        async with self._lock:
            row = self._rows.get(session.id)
            if row is None or not row.is_active:
                return None
            row.context_data = {**(row.context_data or {}), **partial}
            row.updated_at = datetime.now(UTC)
            return _copy(row)

    async def touch(self, session: ChatSession, now: datetime, ttl: timedelta) -> ChatSession | None:
        async with self._lock:
            row = self._rows.get(session.id)
            if row is None or not row.is_active:
                return None
            row.last_activity = now
            row.expires_at = now + ttl
            row.message_count += 1
            row.updated_at = now
            return _copy(row)

    async def mark_expired_inactive(self, now: datetime) -> int:
        async with self._lock:
            count = 0
            for row in self._rows.values():
                if row.is_active and row.expires_at < now:
                    row.is_active = False
                    row.updated_at = now
                    count += 1
            return count

    async def aggregate_statistics(self, now: datetime) -> SessionStatistics:
        async with self._lock:
            rows = list(self._rows.values())
        active = [row for row in rows if row.is_active]
        expired = [row for row in active if row.expires_at < now]
        total_messages = sum(row.message_count for row in active)
        avg_messages = total_messages / len(active) if active else 0.0
        return SessionStatistics(
            total_sessions=len(rows),
            active_sessions=len(active),
            expired_sessions=len(expired),
            avg_messages_per_session=round(avg_messages, 2),
            total_messages=total_messages,
        )

    async def list_active(self, limit: int = 100) -> list[ChatSession]:
        async with self._lock:
            active = [row for row in self._rows.values() if row.is_active]
        active.sort(key=lambda row: row.last_activity, reverse=True)
        return [_copy(row) for row in active[:limit]]

    async def list_by_user(self, user_id: str) -> list[ChatSession]:
        async with self._lock:
            rows = [row for row in self._rows.values() if row.user_id == user_id]
        rows.sort(key=lambda row: row.last_activity, reverse=True)
        return [_copy(row) for row in rows]
