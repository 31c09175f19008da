"""Service-account OAuth tokens for Google APIs."""
import asyncio
import json
import logging
from typing import Optional

from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ...exceptions import ProviderConfigError
from ..base import SourceAdapter


logger = logging.getLogger(__name__)


class ServiceAccountTokenSource:
    """Lazily refreshed bearer token for one service account and scope set."""

    def __init__(self, service_account_json: str, scopes: list[str]) -> None:
        try:
            info = json.loads(service_account_json)
            self._credentials = service_account.Credentials.from_service_account_info(
                info, scopes=scopes
            )
        except (ValueError, KeyError) as exc:
            raise ProviderConfigError(f"Invalid service account JSON: {exc}") from exc

    @property
    def project_id(self) -> Optional[str]:
        return self._credentials.project_id

    async def token(self) -> str:
        """Return a valid access token, refreshing off the event loop if needed."""
        if not self._credentials.valid:
            await asyncio.to_thread(self._credentials.refresh, Request())
            logger.debug("Refreshed service account token")
        return self._credentials.token

    async def headers(self) -> dict:
        return {"Authorization": f"Bearer {await self.token()}"}


class ServiceAccountAdapter(SourceAdapter):
    """Adapter authenticating with a Google service account.

    Subclasses set ``scopes`` and return the credential JSON from
    ``service_account_json``.
    """

    scopes: list[str] = []

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._tokens: Optional[ServiceAccountTokenSource] = None

    def service_account_json(self) -> Optional[str]:
        return self.settings.firebase_service_account_json

    def _token_source(self) -> ServiceAccountTokenSource:
        if self._tokens is None:
            self._tokens = ServiceAccountTokenSource(
                self.service_account_json(), self.scopes
            )
        return self._tokens

    async def auth_headers(self) -> dict:
        headers = await self._token_source().headers()
        headers["Content-Type"] = "application/json"
        return headers
