"""Pytest fixtures for chatbot API tests."""

import uuid
from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from src.app import create_app
from src.config import settings
from src.modules.chatbot.providers.base import IdentityTranslator, NluResult
from src.modules.chatbot.rate_limit import limiter
from src.modules.chatbot.stores.memory import MemorySessionStore


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Iterator[None]:
    """Rate-limit counters live in a module-level limiter; start each test clean."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def nlu_engine() -> AsyncMock:
    engine = AsyncMock()
    engine.detect_intent.return_value = NluResult(
        text="Hello! How can I help with your vaccination?",
        intent="greeting",
        confidence=0.91,
        context={"stage": "welcome"},
    )
    return engine


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def app(session_store, nlu_engine) -> FastAPI:
    return create_app(session_store=session_store, nlu_engine=nlu_engine, translator=IdentityTranslator())


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, headers={"User-Agent": "Mozilla/5.0"})


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def make_token():
    """Sign a bearer token with the configured secret."""

    def _make(role: str = "admin", is_platform_admin: bool = False) -> str:
        claims = {"sub": str(uuid.uuid4()), "role": role, "is_platform_admin": is_platform_admin}
        return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    return _make


@pytest.fixture
def admin_headers(make_token) -> dict:
    return {"Authorization": f"Bearer {make_token()}"}
