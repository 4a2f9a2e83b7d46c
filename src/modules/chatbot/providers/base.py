"""Abstract base classes for the NLU engine and translation collaborators."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from src.modules.chatbot.constants import DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)


class NluEngineError(Exception):
    """The NLU engine could not produce a usable answer."""


@dataclass
class NluResult:
    text: str
    intent: str
    confidence: float
    context: dict[str, Any] = field(default_factory=dict)
    parameters: dict[str, Any] = field(default_factory=dict)
    action: str | None = None
    all_required_params_present: bool = False


class NluEngine(ABC):
    @abstractmethod
    async def detect_intent(
        self,
        text: str,
        session_id: str,
        context: dict[str, Any],
        language_code: str,
    ) -> NluResult:
        """Run one dialogue turn. Raises NluEngineError (or httpx errors) on failure."""

    async def aclose(self) -> None:
        """Release HTTP clients."""


class Translator(ABC):
    """Language detection and translation that never fail the caller.

    Subclasses implement ``_detect`` and ``_translate`` and may raise freely;
    the public methods bound them with a timeout and fall back to the default
    language or the untranslated text.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    @abstractmethod
    async def _detect(self, text: str) -> str: ...

    @abstractmethod
    async def _translate(self, text: str, target_language: str) -> str: ...

    async def detect_language(self, text: str) -> str:
        try:
            language = await asyncio.wait_for(self._detect(text), timeout=self.timeout)
        except Exception as exc:
            logger.warning("Language detection failed: %s", exc)
            return DEFAULT_LANGUAGE
        return language or DEFAULT_LANGUAGE

    async def try_translate(self, text: str, target_language: str) -> str | None:
        """Translated text, or None when the backend failed or returned nothing."""
        if not text:
            return text
        try:
            translated = await asyncio.wait_for(
                self._translate(text, target_language), timeout=self.timeout
            )
        except Exception as exc:
            logger.warning("Translation to %s failed: %s", target_language, exc)
            return None
        return translated or None

    async def translate(self, text: str, target_language: str) -> str:
        translated = await self.try_translate(text, target_language)
        return text if translated is None else translated

    async def aclose(self) -> None:
        """Release HTTP clients."""


class IdentityTranslator(Translator):
    """Used when no translation backend is configured."""

    def __init__(self) -> None:
        super().__init__(timeout=1.0)

    async def _detect(self, text: str) -> str:
        return DEFAULT_LANGUAGE

    async def _translate(self, text: str, target_language: str) -> str:
        return text
