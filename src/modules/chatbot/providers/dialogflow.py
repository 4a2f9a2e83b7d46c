"""Dialogflow ES NLU engine over the v2 REST API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from src.modules.chatbot.providers.base import NluEngine, NluEngineError, NluResult
from src.modules.chatbot.providers.google_auth import ServiceAccountTokenProvider

logger = logging.getLogger(__name__)

# Retry config for detectIntent
_MAX_RETRIES = 2
_RETRY_STATUSES = {429, 500, 502, 503, 504}
_BASE_BACKOFF_SECONDS = 0.5

# Input context carrying caller-supplied slots into the agent
_INPUT_CONTEXT_NAME = "session-context"
_INPUT_CONTEXT_LIFESPAN = 5


class DialogflowEngine(NluEngine):
    def __init__(
        self,
        project_id: str,
        token_provider: ServiceAccountTokenProvider,
        base_url: str = "https://dialogflow.googleapis.com",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.project_id = project_id
        self.token_provider = token_provider
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    def _session_path(self, session_id: str) -> str:
        return f"projects/{self.project_id}/agent/sessions/{session_id}"

    def _build_request(
        self, text: str, session_id: str, context: dict[str, Any], language_code: str
    ) -> dict:
        body: dict = {"queryInput": {"text": {"text": text, "languageCode": language_code}}}
        if context:
            body["queryParams"] = {
                "contexts": [
                    {
                        "name": f"{self._session_path(session_id)}/contexts/{_INPUT_CONTEXT_NAME}",
                        "lifespanCount": _INPUT_CONTEXT_LIFESPAN,
                        "parameters": {key: str(value) for key, value in context.items()},
                    }
                ]
            }
        return body

    async def _post_with_retry(self, path: str, body: dict) -> httpx.Response:
        """POST with exponential backoff for retryable statuses and transport errors."""
        if not self.project_id:
            raise NluEngineError("Dialogflow project id is not configured")

        client = await self._get_client()
        token = await self.token_provider.get_token()
        headers = {"Authorization": f"Bearer {token}"}

        for attempt in range(_MAX_RETRIES + 1):
            try:
                response = await client.post(path, json=body, headers=headers)
            except httpx.RequestError as exc:
                if attempt >= _MAX_RETRIES:
                    raise
                delay = _BASE_BACKOFF_SECONDS * (2 ** attempt)
                logger.warning("Dialogflow request error: %s, retrying in %.1fs", exc, delay)
                await asyncio.sleep(delay)
                continue

            if response.status_code < 400:
                return response
            if response.status_code not in _RETRY_STATUSES or attempt >= _MAX_RETRIES:
                response.raise_for_status()
            delay = _BASE_BACKOFF_SECONDS * (2 ** attempt)
            logger.warning(
                "Dialogflow returned %d, retrying in %.1fs (attempt %d/%d)",
                response.status_code, delay, attempt + 1, _MAX_RETRIES,
            )
            await asyncio.sleep(delay)

        raise NluEngineError("Max retries exceeded for Dialogflow request")

    @staticmethod
    def _extract_context(query_result: dict) -> dict[str, str]:
        """String-valued parameters of the first output context."""
        output_contexts = query_result.get("outputContexts") or []
        if not output_contexts:
            return {}
        parameters = output_contexts[0].get("parameters") or {}
        return {key: value for key, value in parameters.items() if isinstance(value, str) and value}

    async def detect_intent(
        self,
        text: str,
        session_id: str,
        context: dict[str, Any],
        language_code: str,
    ) -> NluResult:
        path = f"/v2/{self._session_path(session_id)}:detectIntent"
        response = await self._post_with_retry(
            path, self._build_request(text, session_id, context, language_code)
        )

        try:
            query_result = response.json()["queryResult"]
        except (ValueError, KeyError, TypeError) as exc:
            raise NluEngineError("Malformed detectIntent response") from exc

        intent = query_result.get("intent") or {}
        return NluResult(
            text=query_result.get("fulfillmentText", ""),
            intent=intent.get("displayName", ""),
            confidence=float(query_result.get("intentDetectionConfidence", 0.0)),
            context=self._extract_context(query_result),
            parameters=query_result.get("parameters") or {},
            action=query_result.get("action"),
            all_required_params_present=bool(query_result.get("allRequiredParamsPresent", False)),
        )

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
