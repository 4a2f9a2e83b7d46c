"""End-to-end tests for the chatbot HTTP API: chat flow, sessions, admin, health, rate limits."""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from src.app import create_app
from src.models.chat_session import ChatSession
from src.modules.chatbot.providers.base import IdentityTranslator, NluEngineError
from src.modules.chatbot.stores.base import SessionStore
from src.modules.chatbot.stores.memory import MemorySessionStore

BASE = "/api/chatbot"


class BrokenMergeStore(MemorySessionStore):
    async def merge_context(self, session, partial):
        raise ConnectionError("store down")


class TestChat:
    def test_first_chat_creates_session(self, client, user_id):
        resp = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id})

        assert resp.status_code == 200
        data = resp.json()
        assert data["text"] == "Hello! How can I help with your vaccination?"
        assert data["intent"] == "greeting"
        assert data["confidence"] == 0.91
        assert data["userId"] == user_id
        assert data["language"] == "en"
        assert data["context"] == {"stage": "welcome"}
        assert data["allRequiredParamsPresent"] is False
        assert uuid.UUID(data["sessionId"])

        session = client.get(f"{BASE}/session/{user_id}").json()
        assert session["userId"] == user_id
        assert session["sessionId"] == data["sessionId"]
        assert session["isActive"] is True
        assert session["messageCount"] == 1

    def test_follow_up_reuses_session(self, client, user_id):
        first = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id}).json()
        second = client.post(f"{BASE}/chat", json={"message": "Again", "userId": user_id}).json()

        assert first["sessionId"] == second["sessionId"]
        assert client.get(f"{BASE}/session/{user_id}").json()["messageCount"] == 2

    def test_missing_message(self, client, user_id):
        resp = client.post(f"{BASE}/chat", json={"userId": user_id})

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "MISSING_MESSAGE"
        assert error["message"] == "Message is required"
        assert error["requestId"] == resp.headers["X-Request-ID"]

    def test_missing_user_id(self, client):
        resp = client.post(f"{BASE}/chat", json={"message": "Hi"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "MISSING_USER_ID"

    def test_invalid_user_id(self, client):
        resp = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": "12345"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_USER_ID"

    def test_malicious_message(self, client, user_id, nlu_engine):
        resp = client.post(
            f"{BASE}/chat", json={"message": "<script>alert(1)</script>", "userId": user_id}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_MESSAGE"
        nlu_engine.detect_intent.assert_not_called()

    def test_oversized_context(self, client, user_id):
        context = {f"key{i}": "v" * 400 for i in range(20)}
        resp = client.post(
            f"{BASE}/chat", json={"message": "Hi", "userId": user_id, "contextData": context}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_CONTEXT"

    def test_engine_failure_returns_fallback(self, client, user_id, nlu_engine):
        nlu_engine.detect_intent.side_effect = NluEngineError("agent unavailable")

        resp = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id})

        assert resp.status_code == 200
        data = resp.json()
        assert data["intent"] == "fallback"
        assert data["confidence"] == 0
        assert data["text"] == "I'm sorry, I couldn't understand that. Please try again."

    def test_store_failure_returns_dialogflow_error(self, nlu_engine, user_id):
        store = AsyncMock(spec=SessionStore)
        store.find_active_by_user.side_effect = ConnectionError("db down")
        client = TestClient(create_app(session_store=store, nlu_engine=nlu_engine, translator=IdentityTranslator()))

        resp = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id})

        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "DIALOGFLOW_ERROR"

    def test_store_failure_after_session_returns_internal_error(self, nlu_engine, user_id):
        client = TestClient(
            create_app(session_store=BrokenMergeStore(), nlu_engine=nlu_engine, translator=IdentityTranslator()),
            headers={"User-Agent": "Mozilla/5.0"},
        )

        resp = client.post(f"{BASE}/chat", json={"message": "hi", "userId": user_id})

        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
        nlu_engine.detect_intent.assert_awaited_once()

    def test_non_string_session_id_is_ignored(self, client, user_id):
        resp = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id, "sessionId": 12345})

        assert resp.status_code == 200
        session = client.get(f"{BASE}/session/{user_id}").json()
        assert resp.json()["sessionId"] == session["sessionId"]


class TestSessionRoutes:
    def test_unknown_user_has_no_session(self, client, user_id):
        resp = client.get(f"{BASE}/session/{user_id}")

        assert resp.status_code == 200
        assert resp.json()["sessionId"] is None
        assert resp.json()["isActive"] is False

    def test_invalid_user_id(self, client):
        resp = client.get(f"{BASE}/session/not-a-uuid")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_USER_ID"

    def test_start_conversation(self, client, user_id):
        resp = client.post(f"{BASE}/start-conversation", json={"userId": user_id})

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Conversation started successfully"
        assert data["userId"] == user_id
        assert data["isActive"] is True

        again = client.post(f"{BASE}/start-conversation", json={"userId": user_id}).json()
        assert again["sessionId"] == data["sessionId"]

    def test_start_then_first_chat_counts_one_turn(self, client, user_id):
        started = client.post(f"{BASE}/start-conversation", json={"userId": user_id}).json()
        chat = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id}).json()

        assert chat["sessionId"] == started["sessionId"]
        assert client.get(f"{BASE}/session/{user_id}").json()["messageCount"] == 1

    def test_start_conversation_requires_user_id(self, client):
        resp = client.post(f"{BASE}/start-conversation", json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "MISSING_USER_ID"

    def test_end_session(self, client, user_id):
        first = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id}).json()

        resp = client.delete(f"{BASE}/session/{user_id}")
        assert resp.json() == {"userId": user_id, "deactivated": True}
        assert client.get(f"{BASE}/session/{user_id}").json()["isActive"] is False

        second = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id}).json()
        assert second["sessionId"] != first["sessionId"]


class TestAdmin:
    def test_requires_token(self, client):
        resp = client.get(f"{BASE}/admin/statistics")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    def test_rejects_invalid_token(self, client):
        resp = client.get(f"{BASE}/admin/statistics", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401

    def test_rejects_non_admin(self, client, make_token):
        headers = {"Authorization": f"Bearer {make_token(role='member')}"}
        resp = client.get(f"{BASE}/admin/statistics", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"

    def test_platform_admin_allowed(self, client, make_token):
        headers = {"Authorization": f"Bearer {make_token(role='member', is_platform_admin=True)}"}
        assert client.get(f"{BASE}/admin/statistics", headers=headers).status_code == 200

    def test_statistics_and_listing(self, client, admin_headers, user_id):
        client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id})

        stats = client.get(f"{BASE}/admin/statistics", headers=admin_headers).json()
        assert stats["success"] is True
        assert stats["data"]["totalSessions"] == 1
        assert stats["data"]["activeSessions"] == 1
        assert stats["data"]["cleanupNeeded"] is False

        sessions = client.get(f"{BASE}/admin/sessions", headers=admin_headers).json()
        assert [s["userId"] for s in sessions["data"]] == [user_id]

    def test_force_cleanup(self, client, admin_headers, session_store):
        now = datetime.now(UTC)
        asyncio.run(
            session_store.create(
                ChatSession(
                    id=uuid.uuid4(),
                    user_id=str(uuid.uuid4()),
                    session_id=str(uuid.uuid4()),
                    context_data={},
                    last_activity=now - timedelta(hours=30),
                    expires_at=now - timedelta(hours=6),
                    message_count=3,
                    is_active=True,
                    user_agent="Mozilla/5.0",
                    ip_address="203.0.113.7",
                )
            )
        )

        resp = client.post(f"{BASE}/admin/cleanup", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["cleaned"] == 1
        assert data["statistics"]["activeSessions"] == 0

        status = client.get(f"{BASE}/admin/cleanup/status", headers=admin_headers).json()["data"]
        assert status["isRunning"] is False
        assert status["lastCleaned"] == 1
        assert status["intervalMinutes"] == 60


class TestHealth:
    def test_healthy(self, client, user_id):
        client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id})

        resp = client.get(f"{BASE}/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["activeSessions"] == 1
        assert data["totalSessions"] == 1
        assert data["uptime"] >= 0

    def test_unhealthy_when_store_unreachable(self, nlu_engine):
        store = AsyncMock(spec=SessionStore)
        store.aggregate_statistics.side_effect = ConnectionError("db down")
        client = TestClient(create_app(session_store=store, nlu_engine=nlu_engine, translator=IdentityTranslator()))

        resp = client.get(f"{BASE}/health")

        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"
        assert resp.json()["error"] == "Service unavailable"


class TestRequestId:
    def test_well_formed_header_is_echoed(self, client):
        resp = client.get(f"{BASE}/health", headers={"X-Request-ID": "trace-abc.123"})
        assert resp.headers["X-Request-ID"] == "trace-abc.123"

    def test_unsafe_header_is_replaced(self, client):
        resp = client.get(f"{BASE}/health", headers={"X-Request-ID": "not a safe id; <script>"})
        assert uuid.UUID(resp.headers["X-Request-ID"])

    def test_error_envelope_carries_request_id(self, client):
        resp = client.post(f"{BASE}/chat", json={"userId": "x"}, headers={"X-Request-ID": "req-42"})
        assert resp.status_code == 400
        assert resp.json()["error"]["requestId"] == "req-42"


class TestRateLimits:
    def test_chat_limited_per_user(self, client, user_id):
        for _ in range(10):
            assert client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id}).status_code == 200

        resp = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": user_id})

        assert resp.status_code == 429
        body = resp.json()
        assert body["error"] == "Rate limit exceeded"
        assert 1 <= body["retryAfter"] <= 60
        assert resp.headers["Retry-After"] == str(body["retryAfter"])

        other = client.post(f"{BASE}/chat", json={"message": "Hi", "userId": str(uuid.uuid4())})
        assert other.status_code == 200

    def test_start_conversation_limited(self, client, user_id):
        for _ in range(5):
            assert client.post(f"{BASE}/start-conversation", json={"userId": user_id}).status_code == 200

        resp = client.post(f"{BASE}/start-conversation", json={"userId": user_id})
        assert resp.status_code == 429
        assert resp.json()["retryAfter"] >= 1

    def test_admin_and_health_exempt(self, client, admin_headers):
        for _ in range(120):
            assert client.get(f"{BASE}/health").status_code == 200
        assert client.get(f"{BASE}/admin/statistics", headers=admin_headers).status_code == 200
