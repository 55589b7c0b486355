"""
smartauth configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from smartauth.exceptions import ConfigurationError

DEFAULT_CREDENTIALS_FILE = Path.home() / ".config" / "smartauth" / "credentials.json"


class ClientIdProvider(BaseModel):
    """Endpoints and client id of one OAuth integration target."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(description="Base URL of the API being called")
    auth_url: str = Field(description="Authorization endpoint the browser is sent to")
    key_api_url: str = Field(description="Base URL of the key API")
    base_oauth_in_url: str = Field(description="Base URL of the OAuth-in service (token exchange)")
    oauth_auth_token_refresh_url: str = Field(description="Refresh-token grant endpoint")
    client_id: str = Field(min_length=1)

    @property
    def token_url(self) -> str:
        """Endpoint used to exchange an authorization code for tokens."""
        return f"{self.base_oauth_in_url.rstrip('/')}/token"


class AuthConfig(BaseModel):
    """Root configuration for smartauth."""

    credentials_file: str = Field(default=str(DEFAULT_CREDENTIALS_FILE))
    profile: str = Field(default="default", min_length=1)
    client: ClientIdProvider | None = None

    scope: str = Field(default="controller:stCli")
    login_timeout: float = Field(default=300.0, gt=0, description="Seconds to wait for the browser")
    expiry_margin: int = Field(default=300, ge=0, description="Refresh tokens this many seconds early")
    http_timeout: float = Field(default=30.0, gt=0)

    callback_host: str = Field(default="127.0.0.1")
    callback_ports: list[int] = Field(default_factory=lambda: [61973, 61974, 61975], min_length=1)

    def client_provider(self) -> ClientIdProvider:
        """Return the configured client, or fail if none is set."""
        if self.client is None:
            raise ConfigurationError(
                "No OAuth client configured. Set 'client' in the config file "
                "or provide SMARTAUTH_CLIENT_ID together with the endpoints."
            )
        return self.client

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> AuthConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        env_file = os.environ.get("SMARTAUTH_CREDENTIALS_FILE")
        env_profile = os.environ.get("SMARTAUTH_PROFILE")
        env_timeout = os.environ.get("SMARTAUTH_LOGIN_TIMEOUT")
        env_client_id = os.environ.get("SMARTAUTH_CLIENT_ID")

        if env_file:
            data["credentials_file"] = env_file
        if env_profile:
            data["profile"] = env_profile
        if env_timeout:
            data["login_timeout"] = env_timeout
        if env_client_id:
            client = dict(data.get("client") or {})
            client["client_id"] = env_client_id
            data["client"] = client

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)
