"""Per-route rate limits for chatbot endpoints, keyed by user id or client address."""

from __future__ import annotations

import logging
import math
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from src.config import settings
from src.modules.chatbot.validation import RequestMetadata

logger = logging.getLogger(__name__)

CHAT_LIMITS = f"{settings.chat_message_rate_limit};{settings.chat_general_rate_limit}"
START_CONVERSATION_LIMITS = (
    f"{settings.start_conversation_rate_limit};{settings.start_conversation_general_rate_limit}"
)
DEFAULT_LIMITS = settings.chatbot_default_rate_limit


def rate_limit_key(request: Request) -> str:
    """Body ``userId`` when the route bound one, otherwise the client address."""
    user_id = getattr(request.state, "rate_limit_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{RequestMetadata.from_request(request).ip_address}"


async def bind_rate_limit_user(request: Request) -> None:
    """FastAPI dependency: expose the JSON body's ``userId`` to ``rate_limit_key``.

    Dependencies resolve before the limiter wrapper runs, so the key function
    can read it from ``request.state``.
    """
    try:
        payload = await request.json()
    except ValueError:
        return
    if isinstance(payload, dict) and payload.get("userId"):
        request.state.rate_limit_user_id = str(payload["userId"])


# Admin and health routes carry no limit decorator and are therefore exempt.
limiter = Limiter(key_func=rate_limit_key, storage_uri=settings.rate_limit_storage_uri)


def _retry_after(request: Request, exc: RateLimitExceeded) -> int:
    # Route limits are unshared, so their window is scoped to the request path.
    scope = exc.limit.scope or request.scope.get("path", "")
    reset_at = limiter.limiter.get_window_stats(exc.limit.limit, exc.limit.key_func(request), scope)[0]
    return max(1, math.ceil(reset_at - time.time()))


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = _retry_after(request, exc)
    logger.info(
        "Rate limit %s exceeded for %s on %s", exc.detail, rate_limit_key(request), request.url.path
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please try again later.",
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
