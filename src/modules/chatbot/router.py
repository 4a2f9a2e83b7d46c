"""Chatbot router: chat turns, session lookup, admin maintenance and health."""

import logging
import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from src.exceptions import MissingUserIdError
from src.modules.chatbot.auth import AdminUser, require_admin
from src.modules.chatbot.chat_service import ChatService
from src.modules.chatbot.cleanup import CleanupScheduler
from src.modules.chatbot.constants import DEFAULT_ACTIVE_SESSION_LIST_LIMIT
from src.modules.chatbot.dependencies import (
    get_chat_service,
    get_cleanup_scheduler,
    get_request_metadata,
    get_session_service,
)
from src.modules.chatbot.rate_limit import (
    CHAT_LIMITS,
    DEFAULT_LIMITS,
    START_CONVERSATION_LIMITS,
    bind_rate_limit_user,
    limiter,
)
from src.modules.chatbot.schemas import (
    ActiveSessionsResponse,
    ChatRequest,
    ChatResponse,
    CleanupResponse,
    CleanupStatusResponse,
    DeactivateSessionResponse,
    HealthResponse,
    SessionInfo,
    StartConversationRequest,
    StartConversationResponse,
    StatisticsResponse,
)
from src.modules.chatbot.session_service import SessionService
from src.modules.chatbot.validation import RequestMetadata

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chatbot", tags=["chatbot"])

_PROCESS_STARTED = time.monotonic()


@router.post(
    "/chat",
    response_model=ChatResponse,
    response_model_by_alias=True,
    dependencies=[Depends(bind_rate_limit_user)],
)
@limiter.limit(CHAT_LIMITS)
async def chat(
    request: Request,
    body: ChatRequest,
    service: ChatService = Depends(get_chat_service),
    meta: RequestMetadata = Depends(get_request_metadata),
) -> ChatResponse:
    """Send one message to the assistant and receive its reply."""
    return await service.handle_chat(body, meta)


@router.get("/session/{user_id}", response_model=SessionInfo, response_model_by_alias=True)
@limiter.limit(DEFAULT_LIMITS)
async def get_session(
    request: Request,
    user_id: str,
    service: SessionService = Depends(get_session_service),
) -> SessionInfo:
    return await service.get_session_info(user_id)


@router.delete(
    "/session/{user_id}",
    response_model=DeactivateSessionResponse,
    response_model_by_alias=True,
)
@limiter.limit(DEFAULT_LIMITS)
async def end_session(
    request: Request,
    user_id: str,
    service: SessionService = Depends(get_session_service),
) -> DeactivateSessionResponse:
    """Deactivate the user's current session; the next turn starts a fresh one."""
    deactivated = await service.deactivate_session(user_id)
    return DeactivateSessionResponse(user_id=user_id, deactivated=deactivated)


@router.post(
    "/start-conversation",
    response_model=StartConversationResponse,
    response_model_by_alias=True,
    dependencies=[Depends(bind_rate_limit_user)],
)
@limiter.limit(START_CONVERSATION_LIMITS)
async def start_conversation(
    request: Request,
    body: StartConversationRequest,
    service: SessionService = Depends(get_session_service),
    meta: RequestMetadata = Depends(get_request_metadata),
) -> StartConversationResponse:
    """Create or resume the caller's session ahead of the first message.

    Starting a conversation is not a turn: message_count is left unchanged.
    """
    if not body.user_id:
        raise MissingUserIdError("User ID is required")

    session = await service.start_session(str(body.user_id), meta)
    return StartConversationResponse(
        message="Conversation started successfully",
        user_id=session.user_id,
        session_id=session.session_id,
        is_active=session.is_active,
    )


# --- Admin (not rate limited) ------------------------------------------------


@router.get("/admin/statistics", response_model=StatisticsResponse, response_model_by_alias=True)
async def session_statistics(
    _admin: AdminUser = Depends(require_admin),
    service: SessionService = Depends(get_session_service),
) -> StatisticsResponse:
    return StatisticsResponse(data=await service.get_session_statistics())


@router.get("/admin/sessions", response_model=ActiveSessionsResponse, response_model_by_alias=True)
async def active_sessions(
    limit: int = Query(DEFAULT_ACTIVE_SESSION_LIST_LIMIT, ge=1, le=1000),
    _admin: AdminUser = Depends(require_admin),
    service: SessionService = Depends(get_session_service),
) -> ActiveSessionsResponse:
    """List active sessions, most recently active first."""
    return ActiveSessionsResponse(data=await service.get_all_active_sessions(limit))


@router.post("/admin/cleanup", response_model=CleanupResponse, response_model_by_alias=True)
async def force_cleanup(
    admin: AdminUser = Depends(require_admin),
    scheduler: CleanupScheduler = Depends(get_cleanup_scheduler),
) -> CleanupResponse:
    logger.info("Manual cleanup requested by %s", admin.subject)
    return CleanupResponse(data=await scheduler.force_cleanup())


@router.get(
    "/admin/cleanup/status",
    response_model=CleanupStatusResponse,
    response_model_by_alias=True,
)
async def cleanup_status(
    _admin: AdminUser = Depends(require_admin),
    scheduler: CleanupScheduler = Depends(get_cleanup_scheduler),
) -> CleanupStatusResponse:
    return CleanupStatusResponse(data=scheduler.status())


# --- Health ------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, response_model_by_alias=True)
async def health(service: SessionService = Depends(get_session_service)):
    """Liveness plus a store round trip; 503 when the store is unreachable."""
    now = datetime.now(UTC)
    try:
        stats = await service.get_session_statistics()
    except Exception:
        logger.exception("Health check failed")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": "Service unavailable",
                "timestamp": now.isoformat(),
            },
        )

    return HealthResponse(
        status="healthy",
        timestamp=now,
        active_sessions=stats.active_sessions,
        total_sessions=stats.total_sessions,
        uptime=round(time.monotonic() - _PROCESS_STARTED, 3),
    )
