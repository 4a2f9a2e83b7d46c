"""Provider factory: build the NLU engine and translator from settings."""

from __future__ import annotations

import logging

from src.config import settings
from src.modules.chatbot.providers.base import IdentityTranslator, NluEngine, Translator
from src.modules.chatbot.providers.dialogflow import DialogflowEngine
from src.modules.chatbot.providers.google_auth import ServiceAccountTokenProvider
from src.modules.chatbot.providers.translate import GoogleTranslator

logger = logging.getLogger(__name__)


def _token_provider() -> ServiceAccountTokenProvider:
    return ServiceAccountTokenProvider(
        credentials_file=settings.google_credentials_file,
    )


def build_nlu_engine() -> NluEngine:
    if not settings.dialogflow_project_id:
        logger.warning("DIALOGFLOW_PROJECT_ID is not set; every chat turn will use the fallback reply")
    return DialogflowEngine(
        project_id=settings.dialogflow_project_id,
        token_provider=_token_provider(),
        base_url=settings.dialogflow_base_url,
        timeout=settings.nlu_timeout_seconds,
    )


def build_translator() -> Translator:
    if not settings.google_credentials_file:
        logger.info("Google credentials not configured; translation disabled")
        return IdentityTranslator()
    return GoogleTranslator(
        token_provider=_token_provider(),
        base_url=settings.translate_base_url,
        timeout=settings.translate_timeout_seconds,
    )
