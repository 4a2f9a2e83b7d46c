"""SQLAlchemy-backed session store (PostgreSQL in production, SQLite in tests)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.exceptions import DuplicateSessionError, NoActiveSessionError
from src.models.chat_session import ChatSession
from src.modules.chatbot.schemas import SessionStatistics
from src.modules.chatbot.stores.base import SessionStore

logger = logging.getLogger(__name__)


class SqlSessionStore(SessionStore):
    """One short unit of work per operation; every call commits before returning.

    The single-active-session invariant is enforced by the partial unique index
    ``uq_chat_sessions_user_active``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    async def find_active_by_user(self, user_id: str) -> ChatSession | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatSession).where(
                    ChatSession.user_id == user_id,
                    ChatSession.is_active.is_(True),
                )
            )
            return result.scalar_one_or_none()

    async def create(self, session: ChatSession) -> ChatSession:
        async with self._session_factory() as db:
            db.add(session)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                logger.info("Active session already exists for user %s", session.user_id)
                raise DuplicateSessionError(
                    f"An active session already exists for user {session.user_id}"
                ) from exc
            await db.refresh(session)
            return session

    async def save(self, session: ChatSession) -> ChatSession:
        async with self._session_factory() as db:
            await db.execute(
                update(ChatSession)
                .where(ChatSession.id == session.id)
                .values(context_data=dict(session.context_data or {}), is_active=session.is_active)
            )
            await db.commit()
            saved = await db.get(ChatSession, session.id)
            if saved is None:
                raise NoActiveSessionError(f"Session {session.session_id} no longer exists")
            return saved

    async def merge_context(self, session: ChatSession, partial: dict) -> ChatSession | None:
        async with self._session_factory() as db:
            # Write first: this takes the row lock (the database lock on SQLite)
            # before the read, so a concurrent merge waits and then sees our keys.
            locked = await db.execute(
                update(ChatSession)
                .where(ChatSession.id == session.id, ChatSession.is_active.is_(True))
                .values(updated_at=func.now())
            )
            if locked.rowcount == 0:
                await db.rollback()
                return None

            current = await db.scalar(
                select(ChatSession.context_data).where(ChatSession.id == session.id)
            )
            await db.execute(
                update(ChatSession)
                .where(ChatSession.id == session.id)
                .values(context_data={**(current or {}), **partial})
            )
            await db.commit()
            return await db.get(ChatSession, session.id)

    async def touch(self, session: ChatSession, now: datetime, ttl: timedelta) -> ChatSession | None:
        async with self._session_factory() as db:
            result = await db.execute(
                update(ChatSession)
                .where(ChatSession.id == session.id, ChatSession.is_active.is_(True))
                .values(
                    last_activity=now,
                    expires_at=now + ttl,
                    message_count=ChatSession.message_count + 1,
                )
            )
            await db.commit()
            if result.rowcount == 0:
                return None
            return await db.get(ChatSession, session.id)

    async def mark_expired_inactive(self, now: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(ChatSession)
                .where(ChatSession.expires_at < now, ChatSession.is_active.is_(True))
                .values(is_active=False)
            )
            await db.commit()
            return result.rowcount or 0

    async def aggregate_statistics(self, now: datetime) -> SessionStatistics:
        async with self._session_factory() as db:
            total = await db.scalar(select(func.count()).select_from(ChatSession))
            active = await db.scalar(
                select(func.count()).select_from(ChatSession).where(ChatSession.is_active.is_(True))
            )
            expired = await db.scalar(
                select(func.count())
                .select_from(ChatSession)
                .where(ChatSession.is_active.is_(True), ChatSession.expires_at < now)
            )
            row = (
                await db.execute(
                    select(
                        func.avg(ChatSession.message_count),
                        func.coalesce(func.sum(ChatSession.message_count), 0),
                    ).where(ChatSession.is_active.is_(True))
                )
            ).one()

        avg_messages = float(row[0]) if row[0] is not None else 0.0
        return SessionStatistics(
            total_sessions=total or 0,
            active_sessions=active or 0,
            expired_sessions=expired or 0,
            avg_messages_per_session=round(avg_messages, 2),
            total_messages=int(row[1]),
        )

    async def list_active(self, limit: int = 100) -> list[ChatSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatSession)
                .where(ChatSession.is_active.is_(True))
                .order_by(ChatSession.last_activity.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_by_user(self, user_id: str) -> list[ChatSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatSession)
                .where(ChatSession.user_id == user_id)
                .order_by(ChatSession.last_activity.desc())
            )
            return list(result.scalars().all())

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
