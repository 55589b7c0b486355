"""
smartauth authentication and token management.

Provides the interactive browser login, token refresh, per-profile
credential storage and the request authenticator that ties them together.
"""

from smartauth.auth.authenticator import LoginAuthenticator
from smartauth.auth.credentials import DEFAULT_EXPIRY_MARGIN, Credentials
from smartauth.auth.login import CANDIDATE_PORTS, LoginFlow, LoginState, generate_pkce_pair
from smartauth.auth.refresh import TokenRefresher
from smartauth.auth.store import CredentialsStore, get_store, init_store, reset_store

__all__ = [
    "CANDIDATE_PORTS",
    "DEFAULT_EXPIRY_MARGIN",
    "Credentials",
    "CredentialsStore",
    "LoginAuthenticator",
    "LoginFlow",
    "LoginState",
    "TokenRefresher",
    "generate_pkce_pair",
    "get_store",
    "init_store",
    "reset_store",
]
