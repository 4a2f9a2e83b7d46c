"""Celery tasks for chat session maintenance.

Deployments that run several API processes can disable the in-process
scheduler (``CLEANUP_ENABLED=false``) and let Celery beat drive this task
instead.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from celery_app import celery
from src.database.engine import build_engine
from src.modules.chatbot.session_service import SessionService
from src.modules.chatbot.stores.sql import SqlSessionStore

logger = logging.getLogger(__name__)


async def _cleanup_expired_sessions_async() -> dict:
    """Deactivate expired sessions and report the remaining totals."""
    # A fresh engine per run: asyncio.run gives every invocation its own loop.
    engine = build_engine()
    store = SqlSessionStore(
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        engine=engine,
    )
    try:
        service = SessionService(store)
        cleaned = await service.cleanup_expired_sessions()
        stats = await service.get_session_statistics()
    finally:
        await store.close()

    return {
        "cleaned": cleaned,
        "active_sessions": stats.active_sessions,
        "total_sessions": stats.total_sessions,
    }


# ---------------------------------------------------------------------------
# Celery task definitions
# ---------------------------------------------------------------------------


@celery.task(name="src.modules.chatbot.tasks.cleanup_expired_sessions")
def cleanup_expired_sessions():
    """Deactivate chat sessions whose expiry has passed."""
    stats = asyncio.run(_cleanup_expired_sessions_async())
    logger.info("cleanup_expired_sessions complete: %s", stats)
    return stats
