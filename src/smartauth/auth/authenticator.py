"""
Request authenticator: makes sure a profile has a valid token before a
request goes out, logging in or refreshing as needed.

Usage::

    init_store("~/.config/smartauth/credentials.json")
    auth = LoginAuthenticator("default", client_id_provider)

    # Either attach the token yourself...
    await auth.authenticate(request)

    # ...or let httpx do it for every request
    async with httpx.AsyncClient(auth=auth) as client:
        await client.get("https://api.example.com/devices")
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable, Generator, Sequence

import httpx

from smartauth.auth.credentials import DEFAULT_EXPIRY_MARGIN, Credentials
from smartauth.auth.login import CANDIDATE_PORTS, DEFAULT_LOGIN_TIMEOUT, DEFAULT_SCOPE, LoginFlow
from smartauth.auth.refresh import TokenRefresher
from smartauth.auth.store import CredentialsStore, get_store, init_store
from smartauth.exceptions import RefreshFailed

if TYPE_CHECKING:
    from smartauth.config import AuthConfig, ClientIdProvider

logger = logging.getLogger("smartauth.auth.authenticator")


class LoginAuthenticator(httpx.Auth):
    """Attaches a bearer token for one profile to outgoing requests.

    Credentials are loaded from the shared :class:`CredentialsStore`. A
    missing token triggers an interactive :class:`LoginFlow`; an expired
    one is refreshed with :class:`TokenRefresher`, falling back to a login
    when the refresh is rejected.
    """

    def __init__(
        self,
        profile_name: str,
        client_id_provider: ClientIdProvider,
        *,
        store: CredentialsStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        scope: str = DEFAULT_SCOPE,
        expiry_margin: float = DEFAULT_EXPIRY_MARGIN,
        login_timeout: float = DEFAULT_LOGIN_TIMEOUT,
        http_timeout: float = 30.0,
        callback_host: str = "127.0.0.1",
        callback_ports: Sequence[int] = CANDIDATE_PORTS,
        open_browser: Callable[[str], Any] = webbrowser.open,
    ) -> None:
        self.profile_name = profile_name
        self.client_id_provider = client_id_provider
        self.scope = scope
        self.expiry_margin = expiry_margin
        self.login_timeout = login_timeout
        self.http_timeout = http_timeout
        self.callback_host = callback_host
        self.callback_ports = tuple(callback_ports)
        self.open_browser = open_browser

        self._store = store if store is not None else get_store()
        self._http_client = http_client
        self._owns_client = http_client is None

    @staticmethod
    def init(credentials_file: str | Path) -> CredentialsStore:
        """Set the process-wide credentials file used by new authenticators."""
        return init_store(credentials_file)

    @classmethod
    def from_config(
        cls,
        config: AuthConfig,
        profile_name: str | None = None,
        *,
        store: CredentialsStore | None = None,
        **kwargs: Any,
    ) -> LoginAuthenticator:
        """Build an authenticator from an :class:`AuthConfig`."""
        return cls(
            profile_name or config.profile,
            config.client_provider(),
            store=store,
            scope=config.scope,
            expiry_margin=config.expiry_margin,
            login_timeout=config.login_timeout,
            http_timeout=config.http_timeout,
            callback_host=config.callback_host,
            callback_ports=config.callback_ports,
            **kwargs,
        )

    @property
    def store(self) -> CredentialsStore:
        return self._store

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client for the token endpoints."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.http_timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this authenticator created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def __aenter__(self) -> LoginAuthenticator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    async def _run_login(self) -> Credentials:
        flow = LoginFlow(
            self.profile_name,
            self.client_id_provider,
            self._store,
            await self._get_client(),
            scope=self.scope,
            timeout=self.login_timeout,
            host=self.callback_host,
            ports=self.callback_ports,
            open_browser=self.open_browser,
        )
        return await flow.run()

    async def login(self) -> Credentials:
        """Log in interactively, joining a login already running for this profile."""
        task = self._store.login_task(self.profile_name, self._run_login)
        return await asyncio.shield(task)

    async def refresh(self) -> Credentials:
        """Refresh the stored access token without user interaction."""
        refresher = TokenRefresher(self.client_id_provider, self._store, await self._get_client())
        return await refresher.refresh(self.profile_name)

    def logout(self) -> bool:
        """Forget the stored credentials for this profile."""
        return self._store.delete(self.profile_name)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def ensure_credentials(self, *, force_refresh: bool = False) -> Credentials:
        """Return valid credentials for the profile, logging in or refreshing as needed.

        Args:
            force_refresh: Renew the token even if it does not look expired,
                e.g. after the API answered 401.
        """
        pending = self._store.login_in_flight(self.profile_name)
        if pending is not None:
            logger.debug("Waiting for the login already running for profile '%s'", self.profile_name)
            return await asyncio.shield(pending)

        seen = self._store.last_login(self.profile_name)
        async with self._store.lock(self.profile_name):
            latest = self._store.last_login(self.profile_name)
            if latest is not None and latest is not seen:
                # A login ran while this caller waited for the lock; share its outcome
                return await asyncio.shield(latest)

            credentials = self._store.load(self.profile_name)

            if credentials is None:
                logger.info("No credentials stored for profile '%s', logging in", self.profile_name)
                return await self.login()

            if not force_refresh and not credentials.is_expired(self.expiry_margin):
                return credentials

            try:
                return await self.refresh()
            except RefreshFailed as e:
                logger.warning("Token refresh for profile '%s' failed (%s), logging in again",
                               self.profile_name, e)
            return await self.login()

    async def authenticate(self, request: Any) -> Any:
        """Attach a bearer token to ``request`` (anything with a ``headers`` mapping)."""
        credentials = await self.ensure_credentials()
        request.headers["Authorization"] = f"Bearer {credentials.access_token}"
        return request

    # httpx.Auth hooks

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("LoginAuthenticator can only be used with httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        await self.authenticate(request)
        response = yield request

        if response.status_code == 401:
            logger.info("Request rejected with 401, renewing token for profile '%s'", self.profile_name)
            credentials = await self.ensure_credentials(force_refresh=True)
            request.headers["Authorization"] = f"Bearer {credentials.access_token}"
            yield request
