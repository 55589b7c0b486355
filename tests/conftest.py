"""Shared fixtures for smartauth tests."""

from __future__ import annotations

import asyncio
import socket
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from smartauth.auth.credentials import Credentials
from smartauth.auth.store import CredentialsStore, init_store, reset_store
from smartauth.config import ClientIdProvider

TOKEN_URL = "https://example.com/oauth-in-url/token"
REFRESH_URL = "https://example.com/refresh-url"


@pytest.fixture(autouse=True)
def _isolate_store() -> Iterator[None]:
    reset_store()
    yield
    reset_store()


@pytest.fixture
def client_id_provider() -> ClientIdProvider:
    return ClientIdProvider(
        base_url="https://example.com/unused-here",
        auth_url="https://example.com/authorize",
        key_api_url="https://example.com/unused-here",
        base_oauth_in_url="https://example.com/oauth-in-url",
        oauth_auth_token_refresh_url=REFRESH_URL,
        client_id="client-id",
    )


@pytest.fixture
def store(tmp_path: Path) -> CredentialsStore:
    return init_store(tmp_path / "credentials.json")


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_credentials(
    access_token: str = "AT1",
    refresh_token: str = "RT1",
    expires_in: int = 3600,
    scope: str = "controller:stCli",
) -> Credentials:
    return Credentials(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        scope=scope,
    )


class TokenEndpoint:
    """Fake token + refresh endpoints served through httpx.MockTransport."""

    def __init__(
        self,
        exchange: Callable[[dict[str, str]], httpx.Response] | None = None,
        refresh: Callable[[dict[str, str]], httpx.Response] | None = None,
    ) -> None:
        self.exchange_calls: list[dict[str, str]] = []
        self.refresh_calls: list[dict[str, str]] = []
        self._exchange = exchange or (lambda form: httpx.Response(
            200, json={"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600,
                       "scope": "controller:stCli"},
        ))
        self._refresh = refresh or (lambda form: httpx.Response(400, json={"error": "invalid_grant"}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if str(request.url) == TOKEN_URL:
            self.exchange_calls.append(form)
            return self._exchange(form)
        if str(request.url) == REFRESH_URL:
            self.refresh_calls.append(form)
            return self._refresh(form)
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


class FakeBrowser:
    """Stands in for webbrowser.open: visits /start, then returns to /finish with a code."""

    def __init__(self, code: str | None = "auth-code", extra: dict[str, str] | None = None) -> None:
        self.code = code
        self.extra = extra or {}
        self.opened: list[str] = []
        self.tasks: list[asyncio.Task[Any]] = []
        self.start_response: httpx.Response | None = None
        self.finish_response: httpx.Response | None = None

    def __call__(self, url: str) -> bool:
        self.opened.append(url)
        self.tasks.append(asyncio.get_running_loop().create_task(self._visit(url)))
        return True

    async def _visit(self, url: str) -> None:
        async with httpx.AsyncClient(trust_env=False) as client:
            self.start_response = await client.get(url)
            location = self.start_response.headers["location"]
            redirect_uri = parse_qs(urlparse(location).query)["redirect_uri"][0]

            params = dict(self.extra)
            if self.code is not None:
                params["code"] = self.code
            self.finish_response = await client.get(redirect_uri, params=params)

    async def wait(self) -> None:
        await asyncio.gather(*self.tasks)


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()
