"""Recurring in-process sweep of expired chat sessions.

One ``CleanupScheduler`` is created per process by the application lifespan
and kept on ``app.state``; its running state is local to that process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime

from src.config import settings
from src.modules.chatbot.schemas import CleanupResult, CleanupStatus
from src.modules.chatbot.session_service import SessionService

logger = logging.getLogger(__name__)


class CleanupScheduler:
    def __init__(
        self,
        session_service: SessionService,
        interval_minutes: float | None = None,
        active_sessions_warning_threshold: int | None = None,
    ) -> None:
        self.session_service = session_service
        self.interval_minutes = interval_minutes or settings.cleanup_interval_minutes
        self.active_sessions_warning_threshold = (
            active_sessions_warning_threshold
            if active_sessions_warning_threshold is not None
            else settings.cleanup_active_sessions_warning_threshold
        )
        self._task: asyncio.Task | None = None
        self.last_run_at: datetime | None = None
        self.last_cleaned: int | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Run one pass now, then every interval. Returns False if already running."""
        if self.is_running:
            logger.warning("Cleanup scheduler is already running")
            return False

        self._task = asyncio.create_task(self._loop(), name="chat-session-cleanup")
        logger.info("Cleanup scheduler started with %s minute interval", self.interval_minutes)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Cleanup scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_minutes * 60)

    async def _perform(self) -> CleanupResult:
        logger.info("Starting scheduled cleanup...")
        cleaned = await self.session_service.cleanup_expired_sessions()
        stats = await self.session_service.get_session_statistics()
        self.last_run_at = datetime.now(UTC)
        self.last_cleaned = cleaned

        logger.info(
            "Cleanup completed: %d sessions cleaned, %d active sessions remaining",
            cleaned, stats.active_sessions,
        )
        if stats.active_sessions > self.active_sessions_warning_threshold:
            logger.warning("High number of active sessions: %d", stats.active_sessions)
        if stats.cleanup_needed and cleaned == 0:
            logger.warning("Cleanup needed but no sessions were cleaned - possible issue")

        return CleanupResult(cleaned=cleaned, statistics=stats)

    async def run_once(self) -> CleanupResult | None:
        """One scheduled pass; failures are logged so the loop keeps ticking."""
        try:
            return await self._perform()
        except Exception:
            logger.exception("Error during cleanup")
            return None

    async def force_cleanup(self) -> CleanupResult:
        logger.info("Forcing immediate cleanup...")
        result = await self._perform()
        logger.info("Force cleanup completed")
        return result

    def status(self) -> CleanupStatus:
        return CleanupStatus(
            is_running=self.is_running,
            interval_minutes=self.interval_minutes,
            last_run_at=self.last_run_at,
            last_cleaned=self.last_cleaned,
        )
