"""Linear workspace credentials.

OAuthTokenService returns a usable access token for a workspace,
refreshing it first when it expires within the configured buffer.
LinearClientFactory builds a LinearClient per request from that token.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from src.relay.linear.client import DEFAULT_API_URL, LinearAPIError, LinearClient
from src.relay.store.base import CorrelationStore
from src.relay.store.models import OAuthToken, utcnow


logger = logging.getLogger(__name__)


DEFAULT_TOKEN_URL = "https://api.linear.app/oauth/token"


class CredentialsNotFoundError(Exception):
    """Raised when no OAuth token is stored for a workspace.

    Attributes:
        workspace_id: The Linear workspace (organization) id.
    """

    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(f"No OAuth token found for workspace {workspace_id}")


class OAuthTokenService:
    """Resolves and refreshes Linear workspace access tokens.

    Attributes:
        store: Persistence for OAuth tokens.
        client_id: Linear OAuth application client id.
        client_secret: Linear OAuth application client secret.
        refresh_buffer_seconds: Tokens expiring within this window are
            refreshed before being returned.
    """

    def __init__(
        self,
        store: CorrelationStore,
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_TOKEN_URL,
        refresh_buffer_seconds: int = 300,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self._http_client = http_client
        self.timeout = timeout

    @property
    def can_refresh(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def get_valid_token(self, workspace_id: str) -> Optional[str]:
        """Return an access token for the workspace, or None if none is stored.

        A token expiring within ``refresh_buffer_seconds`` is refreshed and
        persisted first.

        Raises:
            LinearAPIError: If a needed refresh fails.
        """
        token = await self.store.get_oauth_token(workspace_id)
        if token is None:
            return None

        if token.expires_within(self.refresh_buffer_seconds):
            if token.refresh_token and self.can_refresh:
                token = await self.refresh(token)
            else:
                logger.warning(
                    "OAuth token near expiry and cannot be refreshed",
                    extra={"workspace_id": workspace_id},
                )

        return token.access_token

    async def refresh(self, token: OAuthToken) -> OAuthToken:
        """Exchange the refresh token for a new access token and store it.

        Raises:
            LinearAPIError: If the token endpoint rejects the request.
        """
        logger.info(
            "Refreshing OAuth token",
            extra={"workspace_id": token.workspace_id},
        )
        data = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        if self._http_client is not None:
            response = await self._http_client.post(self.token_url, data=data)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.token_url, data=data)

        if response.status_code >= 400:
            logger.error(
                "OAuth token refresh failed",
                extra={
                    "workspace_id": token.workspace_id,
                    "status_code": response.status_code,
                },
            )
            raise LinearAPIError(
                f"OAuth token refresh failed: {response.status_code}",
                status_code=response.status_code,
            )

        body = response.json()
        expires_in = body.get("expires_in")
        refreshed = OAuthToken(
            workspace_id=token.workspace_id,
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or token.refresh_token,
            token_type=body.get("token_type") or token.token_type,
            scope=body.get("scope") or token.scope,
            expires_at=utcnow() + timedelta(seconds=int(expires_in))
            if expires_in is not None
            else None,
        )
        await self.store.save_oauth_token(refreshed)
        return refreshed

    async def refresh_expiring_tokens(self, now: Optional[datetime] = None) -> int:
        """Refresh every stored token that expires within the buffer.

        Failures are logged per workspace and do not stop the sweep.

        Returns:
            Number of tokens refreshed.
        """
        if not self.can_refresh:
            return 0

        cutoff = (now or utcnow()) + timedelta(seconds=self.refresh_buffer_seconds)
        refreshed = 0
        for token in await self.store.list_expiring_oauth_tokens(cutoff):
            try:
                await self.refresh(token)
                refreshed += 1
            except Exception:
                logger.exception(
                    "Failed to refresh OAuth token",
                    extra={"workspace_id": token.workspace_id},
                )
        return refreshed


class LinearClientFactory:
    """Builds a LinearClient bound to a workspace's current token."""

    def __init__(
        self,
        tokens: OAuthTokenService,
        api_url: str = DEFAULT_API_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.tokens = tokens
        self.api_url = api_url
        self.http_client = http_client
        self.timeout = timeout

    async def for_workspace(self, workspace_id: str) -> LinearClient:
        """Return a client for the workspace.

        Raises:
            CredentialsNotFoundError: If the workspace has no stored token.
        """
        token = await self.tokens.get_valid_token(workspace_id)
        if token is None:
            raise CredentialsNotFoundError(workspace_id)
        return LinearClient(
            token=token,
            api_url=self.api_url,
            timeout=self.timeout,
            http_client=self.http_client,
        )
