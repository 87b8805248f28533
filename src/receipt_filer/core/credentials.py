from __future__ import annotations

import threading

import google.auth.transport.requests
import google.oauth2.credentials
from google.auth.credentials import Credentials
from google.oauth2 import service_account

from receipt_filer.core.config import Settings
from receipt_filer.core.logging import get_logger, log_exception

logger = get_logger(__name__)

SCOPES = (
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/cloud-platform",
)


class CredentialError(RuntimeError):
    pass


class TokenProvider:
    def get_token(self) -> str:  # pragma: no cover
        raise NotImplementedError

    def credentials(self) -> Credentials:  # pragma: no cover
        raise NotImplementedError


class StaticTokenProvider(TokenProvider):
    def __init__(self, token: str):
        self._token = token

    def get_token(self) -> str:
        return self._token

    def credentials(self) -> Credentials:
        return google.oauth2.credentials.Credentials(token=self._token)


class ServiceAccountTokenProvider(TokenProvider):
    """Bearer tokens for one service account, shared by Drive and Vertex AI."""

    def __init__(self, *, client_email: str, private_key: str):
        info = {
            "type": "service_account",
            "client_email": client_email,
            # Env files usually carry the PEM with literal "\n" sequences.
            "private_key": private_key.replace("\\n", "\n"),
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        self._credentials = service_account.Credentials.from_service_account_info(
            info, scopes=list(SCOPES)
        )
        self._lock = threading.Lock()

    def get_token(self) -> str:
        with self._lock:
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(google.auth.transport.requests.Request())
                except Exception as e:
                    log_exception(logger, "credentials.refresh.failure")
                    raise CredentialError(f"Token refresh failed: {e}") from e
            return str(self._credentials.token)

    def credentials(self) -> Credentials:
        return self._credentials


def build_token_provider(settings: Settings) -> TokenProvider:
    if not settings.google_client_email or not settings.google_private_key:
        raise CredentialError("GOOGLE_CLIENT_EMAIL and GOOGLE_PRIVATE_KEY are required")
    return ServiceAccountTokenProvider(
        client_email=settings.google_client_email,
        private_key=settings.google_private_key,
    )
