"""FastAPI dependencies resolving the chatbot services held on ``app.state``."""

from fastapi import Request

from src.modules.chatbot.chat_service import ChatService
from src.modules.chatbot.cleanup import CleanupScheduler
from src.modules.chatbot.session_service import SessionService
from src.modules.chatbot.validation import RequestMetadata


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_cleanup_scheduler(request: Request) -> CleanupScheduler:
    return request.app.state.cleanup_scheduler


def get_request_metadata(request: Request) -> RequestMetadata:
    return RequestMetadata.from_request(request)
