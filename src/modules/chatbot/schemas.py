"""Pydantic v2 schemas for chatbot endpoints and session read models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionInfo(BaseModel):
    """Public view of a user's current session; resumed and new sessions look the same."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    session_id: str | None = Field(None, alias="sessionId")
    is_active: bool = Field(False, alias="isActive")
    message_count: int | None = Field(None, alias="messageCount")
    last_activity: datetime | None = Field(None, alias="lastActivity")


class SessionSummary(BaseModel):
    """Row of the admin active-session listing."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    session_id: str = Field(alias="sessionId")
    last_activity: datetime = Field(alias="lastActivity")
    message_count: int = Field(alias="messageCount")
    created_at: datetime | None = Field(None, alias="createdAt")


class SessionStatistics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_sessions: int = Field(0, alias="totalSessions")
    active_sessions: int = Field(0, alias="activeSessions")
    expired_sessions: int = Field(0, alias="expiredSessions")
    avg_messages_per_session: float = Field(0.0, alias="avgMessagesPerSession")
    total_messages: int = Field(0, alias="totalMessages")
    cleanup_needed: bool = Field(False, alias="cleanupNeeded")


class ChatRequest(BaseModel):
    """Request body for POST /chat.

    Fields are loosely typed so that shape errors surface as the chatbot's own
    400 codes instead of a generic 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: Any = None
    user_id: Any = Field(None, alias="userId")
    session_id: Any = Field(None, alias="sessionId")
    context_data: Any = Field(None, alias="contextData")


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    intent: str
    confidence: float
    session_id: str | None = Field(None, alias="sessionId")
    context: dict[str, Any] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)
    action: str | None = None
    all_required_params_present: bool = Field(False, alias="allRequiredParamsPresent")
    user_id: str = Field(alias="userId")
    language: str


class StartConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Any = Field(None, alias="userId")


class StartConversationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    user_id: str = Field(alias="userId")
    session_id: str | None = Field(None, alias="sessionId")
    is_active: bool = Field(alias="isActive")


class DeactivateSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    deactivated: bool


class StatisticsResponse(BaseModel):
    success: bool = True
    data: SessionStatistics


class ActiveSessionsResponse(BaseModel):
    success: bool = True
    data: list[SessionSummary]


class CleanupResult(BaseModel):
    cleaned: int
    statistics: SessionStatistics


class CleanupResponse(BaseModel):
    success: bool = True
    data: CleanupResult


class CleanupStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_running: bool = Field(alias="isRunning")
    interval_minutes: float = Field(alias="intervalMinutes")
    last_run_at: datetime | None = Field(None, alias="lastRunAt")
    last_cleaned: int | None = Field(None, alias="lastCleaned")


class CleanupStatusResponse(BaseModel):
    success: bool = True
    data: CleanupStatus


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    timestamp: datetime
    active_sessions: int = Field(alias="activeSessions")
    total_sessions: int = Field(alias="totalSessions")
    uptime: float
