"""
Interactive browser login via a short-lived local callback server.

The flow binds an aiohttp server on the first free candidate port, sends
the user's browser to ``/start`` (which redirects to the authorization
endpoint), waits for the provider to redirect back to ``/finish`` with an
authorization code, and exchanges that code for tokens.

Features:
- PKCE (Proof Key for Code Exchange)
- Explicit ``ready`` signal once the server is listening
- Login timeout; the server is always shut down before returning
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import html
import logging
import secrets
import webbrowser
from enum import Enum
from typing import Any, Callable, Sequence
from urllib.parse import urlencode

import httpx
from aiohttp import web

from smartauth.auth.credentials import Credentials
from smartauth.auth.endpoints import request_tokens
from smartauth.auth.store import CredentialsStore
from smartauth.config import ClientIdProvider
from smartauth.exceptions import CallbackError, ExchangeFailed, LoginTimeout, PortUnavailable

logger = logging.getLogger("smartauth.auth.login")

CANDIDATE_PORTS: tuple[int, ...] = (61973, 61974, 61975)
DEFAULT_SCOPE = "controller:stCli"
DEFAULT_LOGIN_TIMEOUT = 300.0

_SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><title>Login complete</title></head>
<body>
    <h1>You are now logged in.</h1>
    <p>You can close this window and return to the command line.</p>
</body>
</html>
"""

_FAILURE_PAGE = """<!DOCTYPE html>
<html>
<head><title>Login failed</title></head>
<body>
    <h1>Login failed</h1>
    <p>{reason}</p>
    <p>Please close this window and try again.</p>
</body>
</html>
"""


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge pair.

    Returns:
        Tuple of (code_verifier, code_challenge) for the S256 method.
    """
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode()).digest()
    code_challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")
    return code_verifier, code_challenge


class LoginState(str, Enum):
    """Stages of a single login flow."""

    IDLE = "idle"
    SERVER_STARTED = "server_started"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"


_TERMINAL = {LoginState.COMPLETE, LoginState.FAILED}


class LoginFlow:
    """One interactive authorization-code login for a profile.

    A flow object is single use. Usage::

        flow = LoginFlow("default", client, store, http_client)
        credentials = await flow.run()

    Tests (or a UI) can wait on ``flow.ready`` and then drive ``flow.start_url``
    themselves instead of opening a real browser.
    """

    def __init__(
        self,
        profile_name: str,
        client_id_provider: ClientIdProvider,
        store: CredentialsStore,
        http_client: httpx.AsyncClient,
        *,
        scope: str = DEFAULT_SCOPE,
        timeout: float = DEFAULT_LOGIN_TIMEOUT,
        host: str = "127.0.0.1",
        ports: Sequence[int] = CANDIDATE_PORTS,
        open_browser: Callable[[str], Any] = webbrowser.open,
    ) -> None:
        self.profile_name = profile_name
        self.client_id_provider = client_id_provider
        self.scope = scope
        self.timeout = timeout
        self.host = host
        self.ports = tuple(ports)
        self.state = LoginState.IDLE
        self.port: int | None = None
        self.ready = asyncio.Event()

        self._store = store
        self._http = http_client
        self._open_browser = open_browser
        self._code_verifier, self._code_challenge = generate_pkce_pair()
        self._code: asyncio.Future[str] | None = None
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        if self.port is None:
            raise RuntimeError("Login callback server has not been started")
        return f"http://{self.host}:{self.port}"

    @property
    def start_url(self) -> str:
        return f"{self.base_url}/start"

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url}/finish"

    def authorization_url(self) -> str:
        """Build the URL /start redirects the browser to."""
        params = {
            "response_type": "code",
            "client_id": self.client_id_provider.client_id,
            "scope": self.scope,
            "redirect_uri": self.redirect_uri,
            "code_challenge": self._code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self.client_id_provider.auth_url}?{urlencode(params)}"

    def _transition(self, state: LoginState) -> None:
        if self.state in _TERMINAL:
            return
        logger.debug("Login for profile '%s': %s -> %s", self.profile_name, self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Callback server
    # ------------------------------------------------------------------

    async def _handle_start(self, request: web.Request) -> web.Response:
        logger.debug("Browser reached /start, redirecting to authorization endpoint")
        raise web.HTTPFound(self.authorization_url())

    async def _handle_finish(self, request: web.Request) -> web.Response:
        query = request.query

        if "error" in query:
            reason = query.get("error_description") or query["error"]
            logger.error("Authorization endpoint returned an error: %s", reason)
            self._fail_callback(CallbackError(f"Authorization was denied: {reason}"))
            return self._failure_response(reason)

        code = query.get("code")
        if not code:
            logger.error("Login callback is missing the authorization code")
            self._fail_callback(CallbackError("Login callback did not include an authorization code"))
            return self._failure_response("No authorization code was received.")

        if self._code is not None and not self._code.done():
            self._code.set_result(code)
        return web.Response(text=_SUCCESS_PAGE, content_type="text/html")

    def _fail_callback(self, exc: CallbackError) -> None:
        if self._code is not None and not self._code.done():
            self._code.set_exception(exc)

    @staticmethod
    def _failure_response(reason: str) -> web.Response:
        return web.Response(
            status=400,
            text=_FAILURE_PAGE.format(reason=html.escape(reason)),
            content_type="text/html",
        )

    async def _start_server(self) -> None:
        app = web.Application()
        app.router.add_get("/start", self._handle_start)
        app.router.add_get("/finish", self._handle_finish)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        for port in self.ports:
            site = web.TCPSite(self._runner, self.host, port)
            try:
                await site.start()
            except OSError as e:
                logger.debug("Port %d unavailable: %s", port, e)
                await site.stop()
                continue
            self.port = port
            break
        else:
            raise PortUnavailable(self.ports)

        self._transition(LoginState.SERVER_STARTED)
        self.ready.set()
        logger.debug("Login callback server listening on %s", self.base_url)

    async def _stop_server(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.debug("Login callback server stopped")

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    async def _authorize(self) -> Credentials:
        self._code = asyncio.get_running_loop().create_future()
        await self._start_server()

        self._transition(LoginState.AWAITING_CALLBACK)
        logger.info("Opening browser to log in profile '%s': %s", self.profile_name, self.start_url)
        try:
            self._open_browser(self.start_url)
        except Exception as e:
            logger.warning("Failed to open browser automatically: %s. Open %s manually.", e, self.start_url)

        try:
            code = await asyncio.wait_for(self._code, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise LoginTimeout(
                f"Login was not completed within {self.timeout:g} seconds"
            ) from None
        self._transition(LoginState.CODE_RECEIVED)

        self._transition(LoginState.EXCHANGING)
        payload = {
            "grant_type": "authorization_code",
            "client_id": self.client_id_provider.client_id,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": self._code_verifier,
        }
        return await request_tokens(
            self._http, self.client_id_provider.token_url, payload, error=ExchangeFailed
        )

    async def run(self) -> Credentials:
        """Run the login and persist the resulting credentials.

        Raises:
            PortUnavailable: If no candidate port could be bound.
            CallbackError: If the browser returned without a code.
            LoginTimeout: If the browser did not return in time.
            ExchangeFailed: If the code could not be exchanged for tokens.
        """
        if self.state is not LoginState.IDLE:
            raise RuntimeError("A LoginFlow can only be run once")

        try:
            try:
                credentials = await self._authorize()
            finally:
                await self._stop_server()
            self._store.save(self.profile_name, credentials)
        except BaseException:
            self._transition(LoginState.FAILED)
            raise

        self._transition(LoginState.COMPLETE)
        logger.info("Logged in profile '%s'", self.profile_name)
        return credentials
