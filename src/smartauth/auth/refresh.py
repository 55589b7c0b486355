"""Non-interactive renewal of access tokens with a stored refresh token."""

from __future__ import annotations

import logging

import httpx

from smartauth.auth.credentials import Credentials
from smartauth.auth.endpoints import request_tokens
from smartauth.auth.store import CredentialsStore
from smartauth.config import ClientIdProvider
from smartauth.exceptions import RefreshFailed, TokenEndpointUnavailable

logger = logging.getLogger("smartauth.auth.refresh")


class TokenRefresher:
    """Exchanges a profile's refresh token for a new access token."""

    def __init__(
        self,
        client_id_provider: ClientIdProvider,
        store: CredentialsStore,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.client_id_provider = client_id_provider
        self._store = store
        self._http = http_client

    async def refresh(self, profile_name: str) -> Credentials:
        """Refresh and persist the credentials of ``profile_name``.

        Raises:
            RefreshFailed: If no refresh token is stored, or the endpoint
                rejects it.
            TokenEndpointUnavailable: If the endpoint cannot be reached or
                answers with a server error.
        """
        current = self._store.load(profile_name)
        if current is None:
            raise RefreshFailed(f"No stored credentials to refresh for profile '{profile_name}'")

        payload = {
            "grant_type": "refresh_token",
            "client_id": self.client_id_provider.client_id,
            "refresh_token": current.refresh_token,
        }

        logger.debug("Refreshing access token for profile '%s'", profile_name)
        credentials = await request_tokens(
            self._http,
            self.client_id_provider.oauth_auth_token_refresh_url,
            payload,
            error=RefreshFailed,
            previous=current,
            unavailable=TokenEndpointUnavailable,
        )

        self._store.save(profile_name, credentials)
        logger.info("Refreshed access token for profile '%s' (expires %s)",
                    profile_name, credentials.expires_at.isoformat())
        return credentials
