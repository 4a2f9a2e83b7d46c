"""ChatService: bridges one chat turn to the NLU engine while keeping session state consistent."""

from __future__ import annotations

import asyncio
import logging

from src.config import settings
from src.exceptions import (
    AppException,
    InvalidContextError,
    InvalidMessageError,
    InvalidUserIdError,
    MissingMessageError,
    MissingUserIdError,
    NluUnavailableError,
    SessionStoreError,
)
from src.modules.chatbot.constants import DEFAULT_LANGUAGE, FALLBACK_INTENT, FALLBACK_REPLY
from src.modules.chatbot.providers.base import NluEngine, NluResult, Translator
from src.modules.chatbot.schemas import ChatRequest, ChatResponse
from src.modules.chatbot.session_service import SessionService
from src.modules.chatbot.validation import (
    ContextValidation,
    MessageValidation,
    RequestMetadata,
    is_valid_session_id,
    is_valid_uuid,
    validate_context_data,
    validate_user_message,
)

logger = logging.getLogger(__name__)


class ChatService:
    """Runs a single conversational turn.

    1. Validate user id, message and context (no external call on failure)
    2. Resume or create the user's session
    3. Merge caller context into the session
    4. Ask the NLU engine, bounded by a timeout
    5. Layer engine-returned context over the session context
    6. Translate the reply into the caller's language, best-effort
    7. Degrade to a fixed fallback reply when the engine fails
    """

    def __init__(
        self,
        session_service: SessionService,
        nlu_engine: NluEngine,
        translator: Translator,
        nlu_timeout: float | None = None,
        language_code: str | None = None,
    ) -> None:
        self.session_service = session_service
        self.nlu_engine = nlu_engine
        self.translator = translator
        self.nlu_timeout = nlu_timeout or settings.nlu_timeout_seconds
        self.language_code = language_code or settings.dialogflow_language_code

    @staticmethod
    def validate(body: ChatRequest) -> tuple[MessageValidation, ContextValidation]:
        if not body.message:
            raise MissingMessageError("Message is required")
        if not body.user_id:
            raise MissingUserIdError(
                "User ID is required. Please provide a unique identifier from the frontend."
            )
        if not is_valid_uuid(body.user_id):
            raise InvalidUserIdError("Invalid user ID format. Please provide a valid UUID.")

        message = validate_user_message(body.message)
        if not message.is_valid:
            raise InvalidMessageError(f"Message validation failed: {', '.join(message.errors)}")

        context = validate_context_data(body.context_data)
        if not context.is_valid:
            raise InvalidContextError(f"Context validation failed: {', '.join(context.errors)}")

        return message, context

    async def _merge_context(self, user_id: str, partial: dict, message_length: int) -> dict:
        try:
            updated = await self.session_service.update_session_context(user_id, partial)
        except AppException:
            raise
        except Exception as exc:
            logger.exception(
                "Session store failed while merging context for user %s (message length=%d)",
                user_id, message_length,
            )
            raise SessionStoreError("An unexpected error occurred.") from exc
        return dict(updated.context_data or {})

    async def _ask_engine(self, text: str, session_id: str, context: dict) -> NluResult:
        return await asyncio.wait_for(
            self.nlu_engine.detect_intent(text, session_id, context, self.language_code),
            timeout=self.nlu_timeout,
        )

    async def handle_chat(self, body: ChatRequest, meta: RequestMetadata) -> ChatResponse:
        message, context = self.validate(body)
        user_id: str = body.user_id
        logger.info(
            "Chat request from user %s: message length=%d, has context=%s",
            user_id, len(body.message), bool(context.sanitized_context),
        )

        try:
            session_info = await self.session_service.get_or_create_session(user_id, meta)
        except Exception as exc:
            logger.exception(
                "Could not establish a session for user %s (message length=%d)",
                user_id, len(body.message),
            )
            raise NluUnavailableError("Error processing your message. Please try again.") from exc

        session_id = session_info.session_id
        if body.session_id:
            if is_valid_session_id(body.session_id):
                session_id = body.session_id
            else:
                logger.warning("Ignoring malformed sessionId from user %s", user_id)

        engine_context = context.sanitized_context
        if engine_context:
            engine_context = await self._merge_context(user_id, engine_context, len(body.message))

        try:
            result = await self._ask_engine(message.sanitized_message, session_id, engine_context)
        except Exception as exc:
            logger.error(
                "NLU engine failed for user %s (message length=%d): %r",
                user_id, len(body.message), exc,
                exc_info=True,
            )
            return ChatResponse(
                text=FALLBACK_REPLY,
                intent=FALLBACK_INTENT,
                confidence=0,
                session_id=session_id,
                user_id=user_id,
                language=DEFAULT_LANGUAGE,
            )

        if result.context:
            await self._merge_context(user_id, result.context, len(body.message))

        language = await self.translator.detect_language(message.sanitized_message)
        text = result.text
        if language != self.language_code:
            translated = await self.translator.try_translate(result.text, language)
            if translated is None:
                language = DEFAULT_LANGUAGE
            else:
                text = translated

        logger.info(
            "Chat response for user %s: intent=%s, confidence=%s",
            user_id, result.intent, result.confidence,
            extra={
                "user_id": user_id,
                "message_length": len(body.message),
                "intent": result.intent,
                "confidence": result.confidence,
            },
        )

        return ChatResponse(
            text=text,
            intent=result.intent,
            confidence=result.confidence,
            session_id=session_id,
            context=result.context,
            parameters=result.parameters,
            action=result.action,
            all_required_params_present=result.all_required_params_present,
            user_id=user_id,
            language=language,
        )
