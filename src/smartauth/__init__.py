"""
smartauth — OAuth login and token management for command-line tools.

Log in once in the browser, and every API call afterwards carries a
valid bearer token.
"""

__version__ = "0.1.0"
__all__ = ["ClientIdProvider", "LoginAuthenticator", "init_store"]

from smartauth.auth import LoginAuthenticator, init_store  # noqa: E402
from smartauth.config import ClientIdProvider  # noqa: E402
