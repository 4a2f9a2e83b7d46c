"""Google Cloud Translation (v2 REST) language detection and translation."""

from __future__ import annotations

import httpx

from src.modules.chatbot.providers.base import Translator
from src.modules.chatbot.providers.google_auth import ServiceAccountTokenProvider


class GoogleTranslator(Translator):
    def __init__(
        self,
        token_provider: ServiceAccountTokenProvider,
        base_url: str = "https://translation.googleapis.com",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.token_provider = token_provider
        self.base_url = base_url
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _post(self, path: str, body: dict) -> dict:
        client = await self._get_client()
        token = await self.token_provider.get_token()
        response = await client.post(
            path, json=body, headers={"Authorization": f"Bearer {token}"}
        )
        response.raise_for_status()
        return response.json()["data"]

    async def _detect(self, text: str) -> str:
        data = await self._post("/language/translate/v2/detect", {"q": text})
        return data["detections"][0][0]["language"]

    async def _translate(self, text: str, target_language: str) -> str:
        data = await self._post(
            "/language/translate/v2",
            {"q": text, "target": target_language, "format": "text"},
        )
        return data["translations"][0]["translatedText"]

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
