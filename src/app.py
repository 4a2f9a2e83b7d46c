"""FastAPI application factory for the MedVax chatbot session service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from src.config import settings
from src.exceptions import AppException
from src.middleware.request_id import RequestIdLogFilter, RequestIdMiddleware
from src.modules.chatbot.chat_service import ChatService
from src.modules.chatbot.cleanup import CleanupScheduler
from src.modules.chatbot.providers.base import NluEngine, Translator
from src.modules.chatbot.providers.factory import build_nlu_engine, build_translator
from src.modules.chatbot.rate_limit import limiter, rate_limit_exceeded_handler
from src.modules.chatbot.session_service import SessionService
from src.modules.chatbot.stores import MemorySessionStore, SessionStore, SqlSessionStore

logger = logging.getLogger(__name__)


def build_session_store() -> SessionStore:
    if settings.session_store_backend == "memory":
        logger.warning("Using in-memory session store; sessions will not survive a restart")
        return MemorySessionStore()

    from src.database.engine import async_session, engine

    return SqlSessionStore(async_session, engine=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, run the cleanup scheduler, release clients on shutdown."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] [%(request_id)s] %(message)s",
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIdLogFilter())

    scheduler: CleanupScheduler = app.state.cleanup_scheduler
    if settings.cleanup_enabled:
        scheduler.start()

    yield

    await scheduler.stop()
    await app.state.nlu_engine.aclose()
    await app.state.translator.aclose()
    await app.state.session_store.close()


def _get_request_id(request: Request) -> str:
    """Retrieve the request ID stored by RequestIdMiddleware."""
    return getattr(request.state, "request_id", "unknown")


def _error_response(status_code: int, code: str, message: str, request_id: str, details: list | None = None) -> JSONResponse:
    """Build the structured error envelope shared by every handler."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or [],
                "requestId": request_id,
            }
        },
    )


def create_app(
    session_store: SessionStore | None = None,
    nlu_engine: NluEngine | None = None,
    translator: Translator | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Collaborators default to the ones described by settings; tests pass their
    own store and engine.
    """
    application = FastAPI(
        title="MedVax Chatbot API",
        description="Session-aware conversational gateway in front of Dialogflow.",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # --- Collaborators ---
    store = session_store or build_session_store()
    engine = nlu_engine or build_nlu_engine()
    session_service = SessionService(store)

    application.state.session_store = store
    application.state.nlu_engine = engine
    application.state.translator = translator or build_translator()
    application.state.session_service = session_service
    application.state.chat_service = ChatService(
        session_service, engine, application.state.translator
    )
    application.state.cleanup_scheduler = CleanupScheduler(session_service)

    # Rate limiter
    application.state.limiter = limiter

    # --- Middleware (last added = outermost in Starlette) ---

    # CORS: configured via CORS_ORIGINS env var, never wildcard with credentials
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID: registered last so it runs first (outermost)
    application.add_middleware(RequestIdMiddleware)

    # --- Routers ---
    from src.api.v1 import api_router

    application.include_router(api_router)

    # --- Exception Handlers ---

    @application.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return _error_response(
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            request_id=_get_request_id(request),
            details=exc.details,
        )

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [
            {"field": ".".join(str(loc) for loc in err.get("loc", [])), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(
            status_code=422,
            code="VALIDATION_ERROR",
            message="Validation failed",
            request_id=_get_request_id(request),
            details=details,
        )

    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @application.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return _error_response(
            status_code=500,
            code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=_get_request_id(request),
        )

    return application


app = create_app()
