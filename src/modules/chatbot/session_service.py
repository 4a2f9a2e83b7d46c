"""Session service: create-or-resume, context merging, expiry and statistics."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from src.config import settings
from src.exceptions import DuplicateSessionError, InvalidUserIdError, NoActiveSessionError
from src.models.chat_session import ChatSession
from src.modules.chatbot.constants import DEFAULT_ACTIVE_SESSION_LIST_LIMIT
from src.modules.chatbot.schemas import SessionInfo, SessionStatistics, SessionSummary
from src.modules.chatbot.stores.base import SessionStore
from src.modules.chatbot.validation import RequestMetadata, is_valid_uuid, perform_security_check

logger = logging.getLogger(__name__)


def _session_info(session: ChatSession) -> SessionInfo:
    return SessionInfo(
        user_id=session.user_id,
        session_id=session.session_id,
        is_active=session.is_active,
        message_count=session.message_count,
        last_activity=session.last_activity,
    )


def _session_summary(session: ChatSession) -> SessionSummary:
    return SessionSummary(
        user_id=session.user_id,
        session_id=session.session_id,
        last_activity=session.last_activity,
        message_count=session.message_count,
        created_at=session.created_at,
    )


class SessionService:
    """Owns every mutation of chat sessions; nothing else writes to the store."""

    def __init__(self, store: SessionStore, ttl: timedelta | None = None) -> None:
        self.store = store
        self.ttl = ttl or timedelta(hours=settings.session_ttl_hours)

    @staticmethod
    def _require_valid_user_id(user_id: str) -> None:
        if not is_valid_uuid(user_id):
            raise InvalidUserIdError("Invalid user ID format. Please provide a valid UUID.")

    async def _resume(self, session: ChatSession) -> ChatSession | None:
        return await self.store.touch(session, datetime.now(UTC), self.ttl)

    async def get_or_create_session(
        self, user_id: str, meta: RequestMetadata | None = None
    ) -> SessionInfo:
        """Resume the user's active session, or start a new one.

        Every call counts as one turn: a new session starts at message_count 1,
        a resumed one is bumped by 1 and has its expiry extended. When
        two callers race to create, the loser re-reads and resumes the winner's
        session.
        """
        self._require_valid_user_id(user_id)
        meta = meta or RequestMetadata()

        security = perform_security_check(meta)
        if security.is_suspicious:
            logger.warning(
                "Suspicious request detected for user %s: %s",
                user_id,
                ", ".join(security.reasons),
            )

        existing = await self.store.find_active_by_user(user_id)
        if existing is not None:
            resumed = await self._resume(existing)
            if resumed is not None:
                logger.info("Session updated for user: %s", user_id)
                return _session_info(resumed)

        now = datetime.now(UTC)
        candidate = ChatSession(
            id=uuid.uuid4(),
            user_id=user_id,
            session_id=str(uuid.uuid4()),
            context_data={},
            last_activity=now,
            expires_at=now + self.ttl,
            message_count=1,
            is_active=True,
            user_agent=meta.user_agent,
            ip_address=meta.ip_address,
        )
        try:
            created = await self.store.create(candidate)
        except DuplicateSessionError:
            winner = await self.store.find_active_by_user(user_id)
            resumed = await self._resume(winner) if winner is not None else None
            if resumed is None:
                raise
            logger.info("Concurrent session creation for user %s resolved to %s", user_id, resumed.session_id)
            return _session_info(resumed)

        logger.info("New session created for user: %s, session: %s", user_id, created.session_id)
        return _session_info(created)

    async def start_session(self, user_id: str, meta: RequestMetadata | None = None) -> SessionInfo:
        """Open a session ahead of the first message without counting a turn.

        An active session is returned untouched; otherwise one is created with
        message_count 0, so the first chat turn reports 1.
        """
        self._require_valid_user_id(user_id)
        meta = meta or RequestMetadata()

        existing = await self.store.find_active_by_user(user_id)
        if existing is not None:
            return _session_info(existing)

        now = datetime.now(UTC)
        candidate = ChatSession(
            id=uuid.uuid4(),
            user_id=user_id,
            session_id=str(uuid.uuid4()),
            context_data={},
            last_activity=now,
            expires_at=now + self.ttl,
            message_count=0,
            is_active=True,
            user_agent=meta.user_agent,
            ip_address=meta.ip_address,
        )
        try:
            created = await self.store.create(candidate)
        except DuplicateSessionError:
            winner = await self.store.find_active_by_user(user_id)
            if winner is None:
                raise
            return _session_info(winner)

        logger.info("Conversation started for user %s: session=%s", user_id, created.session_id)
        return _session_info(created)

    async def update_session_context(self, user_id: str, context: dict[str, Any]) -> ChatSession:
        session = await self.store.find_active_by_user(user_id)
        if session is None:
            raise NoActiveSessionError(f"No active session found for user {user_id}")

        merged = await self.store.merge_context(session, context)
        if merged is None:
            raise NoActiveSessionError(f"No active session found for user {user_id}")
        logger.info("Session context updated for user: %s", user_id)
        return merged

    async def get_session_info(self, user_id: str) -> SessionInfo:
        self._require_valid_user_id(user_id)
        session = await self.store.find_active_by_user(user_id)
        if session is None:
            return SessionInfo(user_id=user_id, session_id=None, is_active=False)
        return _session_info(session)

    async def deactivate_session(self, user_id: str) -> bool:
        self._require_valid_user_id(user_id)
        session = await self.store.find_active_by_user(user_id)
        if session is None:
            return False
        session.is_active = False
        await self.store.save(session)
        logger.info("Session deactivated for user: %s", user_id)
        return True

    async def cleanup_expired_sessions(self) -> int:
        cleaned = await self.store.mark_expired_inactive(datetime.now(UTC))
        logger.info("Cleaned up %d expired sessions", cleaned)
        return cleaned

    async def get_session_statistics(self) -> SessionStatistics:
        stats = await self.store.aggregate_statistics(datetime.now(UTC))
        stats.cleanup_needed = stats.expired_sessions > 0
        return stats

    async def get_active_session_count(self) -> int:
        stats = await self.store.aggregate_statistics(datetime.now(UTC))
        return stats.active_sessions

    async def get_all_active_sessions(
        self, limit: int = DEFAULT_ACTIVE_SESSION_LIST_LIMIT
    ) -> list[SessionSummary]:
        sessions = await self.store.list_active(limit)
        return [_session_summary(s) for s in sessions]

    async def get_user_sessions(self, user_id: str) -> list[SessionSummary]:
        self._require_valid_user_id(user_id)
        sessions = await self.store.list_by_user(user_id)
        return [_session_summary(s) for s in sessions]
