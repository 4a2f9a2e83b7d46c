"""OAuth2 access tokens for Google APIs from a service-account key file."""

from __future__ import annotations

import asyncio
import logging

from google.auth.credentials import Credentials
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class ServiceAccountTokenProvider:
    """Hands out a bearer token, refreshing it off the event loop when stale.

    google-auth tracks expiry and refreshes ahead of it; ``valid`` turns
    False shortly before the token lapses.
    """

    def __init__(
        self,
        credentials_file: str,
        scopes: list[str] | None = None,
        credentials: Credentials | None = None,
    ) -> None:
        self.credentials_file = credentials_file
        self.scopes = scopes or [CLOUD_PLATFORM_SCOPE]
        self._credentials = credentials
        self._lock = asyncio.Lock()

    def _load_credentials(self) -> Credentials:
        if self._credentials is None:
            if not self.credentials_file:
                raise RuntimeError("Google credentials file is not configured")
            self._credentials = service_account.Credentials.from_service_account_file(
                self.credentials_file, scopes=self.scopes
            )
        return self._credentials

    async def get_token(self) -> str:
        async with self._lock:
            credentials = self._load_credentials()
            if not credentials.valid:
                await asyncio.to_thread(credentials.refresh, GoogleAuthRequest())
                logger.info(
                    "Refreshed Google access token for %s",
                    getattr(credentials, "service_account_email", "service account"),
                )
            return credentials.token
