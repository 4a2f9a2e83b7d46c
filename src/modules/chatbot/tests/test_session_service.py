"""Tests for SessionService over the in-memory store: resume/create, context, expiry."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from src.exceptions import InvalidUserIdError, NoActiveSessionError
from src.models.chat_session import ChatSession
from src.modules.chatbot.session_service import SessionService
from src.modules.chatbot.stores.memory import MemorySessionStore
from src.modules.chatbot.validation import RequestMetadata

BROWSER = RequestMetadata(ip_address="203.0.113.7", user_agent="Mozilla/5.0")


class SlowCreateStore(MemorySessionStore):
    """Yields between the lookup and the insert so concurrent callers interleave."""

    async def find_active_by_user(self, user_id):
        found = await super().find_active_by_user(user_id)
        await asyncio.sleep(0)
        return found


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def service(store):
    return SessionService(store, ttl=timedelta(hours=24))


@pytest.fixture
def user_id():
    return str(uuid.uuid4())


class TestGetOrCreateSession:
    @pytest.mark.asyncio
    async def test_creates_new_session(self, service, user_id):
        info = await service.get_or_create_session(user_id, BROWSER)

        assert info.user_id == user_id
        assert info.is_active is True
        assert info.message_count == 1
        assert uuid.UUID(info.session_id)

    @pytest.mark.asyncio
    async def test_resumes_existing_session(self, service, user_id):
        first = await service.get_or_create_session(user_id, BROWSER)
        second = await service.get_or_create_session(user_id, BROWSER)

        assert second.session_id == first.session_id
        assert second.message_count == 2
        assert second.last_activity >= first.last_activity

    @pytest.mark.asyncio
    async def test_resume_extends_expiry(self, service, store, user_id):
        await service.get_or_create_session(user_id, BROWSER)
        before = await store.find_active_by_user(user_id)
        await service.get_or_create_session(user_id, BROWSER)
        after = await store.find_active_by_user(user_id)

        assert after.expires_at >= before.expires_at
        assert after.expires_at - after.last_activity == timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_captures_request_metadata(self, service, store, user_id):
        await service.get_or_create_session(user_id, BROWSER)
        row = await store.find_active_by_user(user_id)

        assert row.ip_address == "203.0.113.7"
        assert row.user_agent == "Mozilla/5.0"

    @pytest.mark.asyncio
    async def test_suspicious_request_is_logged_not_blocked(self, service, user_id, caplog):
        meta = RequestMetadata(ip_address="127.0.0.1", user_agent="curl/8.0")
        info = await service.get_or_create_session(user_id, meta)

        assert info.is_active
        assert "Suspicious request detected" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_user_id_rejected(self, service):
        with pytest.raises(InvalidUserIdError):
            await service.get_or_create_session("not-a-uuid", BROWSER)

    @pytest.mark.asyncio
    async def test_anonymous_user_id_accepted(self, service):
        info = await service.get_or_create_session("uuid_1712345678901_abc123XYZ", BROWSER)
        assert info.is_active

    @pytest.mark.asyncio
    async def test_concurrent_creation_yields_one_active_session(self, user_id):
        store = SlowCreateStore()
        service = SessionService(store)

        results = await asyncio.gather(
            *(service.get_or_create_session(user_id, BROWSER) for _ in range(5))
        )

        assert len({r.session_id for r in results}) == 1
        sessions = await store.list_by_user(user_id)
        assert len([s for s in sessions if s.is_active]) == 1
        assert sessions[0].message_count == 5


class TestUpdateSessionContext:
    @pytest.mark.asyncio
    async def test_merges_per_key(self, service, user_id):
        await service.get_or_create_session(user_id, BROWSER)
        await service.update_session_context(user_id, {"city": "Pune", "age": 34})
        updated = await service.update_session_context(user_id, {"city": "Mumbai"})

        assert updated.context_data == {"city": "Mumbai", "age": 34}

    @pytest.mark.asyncio
    async def test_does_not_touch_counters(self, service, user_id):
        await service.get_or_create_session(user_id, BROWSER)
        updated = await service.update_session_context(user_id, {"city": "Pune"})
        assert updated.message_count == 1

    @pytest.mark.asyncio
    async def test_without_active_session_raises(self, service, user_id):
        with pytest.raises(NoActiveSessionError):
            await service.update_session_context(user_id, {"city": "Pune"})


class TestSessionInfo:
    @pytest.mark.asyncio
    async def test_absent_session(self, service, user_id):
        info = await service.get_session_info(user_id)

        assert info.user_id == user_id
        assert info.session_id is None
        assert info.is_active is False

    @pytest.mark.asyncio
    async def test_present_session(self, service, user_id):
        created = await service.get_or_create_session(user_id, BROWSER)
        info = await service.get_session_info(user_id)

        assert info == created

    @pytest.mark.asyncio
    async def test_invalid_user_id(self, service):
        with pytest.raises(InvalidUserIdError):
            await service.get_session_info("abc")


class TestDeactivate:
    @pytest.mark.asyncio
    async def test_deactivate_then_new_session(self, service, user_id):
        first = await service.get_or_create_session(user_id, BROWSER)

        assert await service.deactivate_session(user_id) is True
        assert await service.deactivate_session(user_id) is False

        second = await service.get_or_create_session(user_id, BROWSER)
        assert second.session_id != first.session_id
        assert second.message_count == 1

        history = await service.get_user_sessions(user_id)
        assert len(history) == 2


class TestExpiryAndStatistics:
    async def _seed(self, store, user_id, expires_in: timedelta, message_count: int = 1):
        now = datetime.now(UTC)
        await store.create(
            ChatSession(
                id=uuid.uuid4(),
                user_id=user_id,
                session_id=str(uuid.uuid4()),
                context_data={},
                last_activity=now - timedelta(hours=25),
                expires_at=now + expires_in,
                message_count=message_count,
                is_active=True,
                user_agent="Mozilla/5.0",
                ip_address="203.0.113.7",
            )
        )

    @pytest.mark.asyncio
    async def test_cleanup_deactivates_only_expired(self, service, store):
        expired_user, live_user = str(uuid.uuid4()), str(uuid.uuid4())
        await self._seed(store, expired_user, timedelta(hours=-1))
        await self._seed(store, live_user, timedelta(hours=1))

        assert await service.cleanup_expired_sessions() == 1
        assert (await service.get_session_info(expired_user)).is_active is False
        assert (await service.get_session_info(live_user)).is_active is True
        assert await service.cleanup_expired_sessions() == 0

    @pytest.mark.asyncio
    async def test_statistics(self, service, store):
        await self._seed(store, str(uuid.uuid4()), timedelta(hours=-1), message_count=3)
        await self._seed(store, str(uuid.uuid4()), timedelta(hours=1), message_count=4)

        stats = await service.get_session_statistics()

        assert stats.total_sessions == 2
        assert stats.active_sessions == 2
        assert stats.expired_sessions == 1
        assert stats.total_messages == 7
        assert stats.avg_messages_per_session == 3.5
        assert stats.cleanup_needed is True

        await service.cleanup_expired_sessions()
        stats = await service.get_session_statistics()
        assert stats.active_sessions == 1
        assert stats.cleanup_needed is False
        assert await service.get_active_session_count() == 1

    @pytest.mark.asyncio
    async def test_expired_session_is_resumed_until_swept(self, service, store, user_id):
        await self._seed(store, user_id, timedelta(hours=-1))

        info = await service.get_or_create_session(user_id, BROWSER)
        assert info.message_count == 2

    @pytest.mark.asyncio
    async def test_active_listing_most_recent_first(self, service):
        older, newer = str(uuid.uuid4()), str(uuid.uuid4())
        await service.get_or_create_session(older, BROWSER)
        await asyncio.sleep(0.01)
        await service.get_or_create_session(newer, BROWSER)

        listing = await service.get_all_active_sessions(limit=10)
        assert [s.user_id for s in listing] == [newer, older]
        assert len(await service.get_all_active_sessions(limit=1)) == 1


class TestStartSession:
    @pytest.mark.asyncio
    async def test_start_does_not_count_a_turn(self, service, user_id):
        started = await service.start_session(user_id, BROWSER)
        assert started.message_count == 0
        assert started.is_active is True

        first_turn = await service.get_or_create_session(user_id, BROWSER)
        assert first_turn.session_id == started.session_id
        assert first_turn.message_count == 1

    @pytest.mark.asyncio
    async def test_start_resumes_without_touching(self, service, user_id):
        await service.get_or_create_session(user_id, BROWSER)
        resumed = await service.start_session(user_id, BROWSER)
        again = await service.start_session(user_id, BROWSER)

        assert resumed.session_id == again.session_id
        assert again.message_count == 1

    @pytest.mark.asyncio
    async def test_start_rejects_invalid_user_id(self, service):
        with pytest.raises(InvalidUserIdError):
            await service.start_session("nope", BROWSER)


class TestConcurrentContextMerges:
    @pytest.mark.asyncio
    async def test_overlapping_merges_keep_every_key(self, service, user_id):
        await service.get_or_create_session(user_id, BROWSER)

        await asyncio.gather(
            service.update_session_context(user_id, {"a": "1"}),
            service.update_session_context(user_id, {"b": "2"}),
        )

        row = await service.store.find_active_by_user(user_id)
        assert row.context_data == {"a": "1", "b": "2"}
