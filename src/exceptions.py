"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class ForbiddenException(AppException):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedException(AppException):
    code = "UNAUTHORIZED"
    status_code = 401


class BadRequestException(AppException):
    code = "BAD_REQUEST"
    status_code = 400


# --- Chatbot ---------------------------------------------------------------


class MissingMessageError(BadRequestException):
    code = "MISSING_MESSAGE"


class MissingUserIdError(BadRequestException):
    code = "MISSING_USER_ID"


class InvalidUserIdError(BadRequestException):
    code = "INVALID_USER_ID"


class InvalidMessageError(BadRequestException):
    code = "INVALID_MESSAGE"


class InvalidContextError(BadRequestException):
    code = "INVALID_CONTEXT"


class NoActiveSessionError(NotFoundException):
    code = "NO_ACTIVE_SESSION"


class DuplicateSessionError(ConflictException):
    """Raised by a session store when a second active session would be created."""

    code = "DUPLICATE_SESSION"


class NluUnavailableError(AppException):
    code = "DIALOGFLOW_ERROR"
    status_code = 500


class SessionStoreError(AppException):
    """A session store call failed after the turn's session was established."""

    code = "INTERNAL_ERROR"
    status_code = 500
