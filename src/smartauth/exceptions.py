"""Exceptions raised by the smartauth credential manager."""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all smartauth errors."""

    pass


class ConfigurationError(AuthError):
    """Raised when smartauth is used before it has been configured."""

    pass


class StoreCorrupt(AuthError):
    """Raised when the credentials file exists but cannot be parsed.

    The file is never replaced with an empty store; the user has to fix or
    remove it explicitly.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Credentials file {path} is corrupt: {reason}")


class LoginFailed(AuthError):
    """Base exception for failures of the interactive browser login."""

    pass


class PortUnavailable(LoginFailed):
    """Raised when none of the local callback ports can be bound."""

    def __init__(self, ports: tuple[int, ...] | list[int]) -> None:
        self.ports = tuple(ports)
        super().__init__(
            "Unable to start the login callback server: ports "
            f"{', '.join(str(p) for p in self.ports)} are all in use."
        )


class CallbackError(LoginFailed):
    """Raised when the browser returns to /finish without a usable code."""

    pass


class LoginTimeout(LoginFailed):
    """Raised when the browser does not return before the login timeout."""

    pass


class ExchangeFailed(LoginFailed):
    """Raised when the token endpoint rejects an authorization code."""

    def __init__(self, message: str) -> None:
        super().__init__(f"{message}. Please run the login again.")


class RefreshFailed(AuthError):
    """Raised when a refresh token is missing, invalid or revoked."""

    pass


class TokenEndpointUnavailable(AuthError):
    """Raised when the token endpoint cannot be reached or answers with a 5xx.

    Unlike :class:`RefreshFailed` this says nothing about the stored
    refresh token, so it does not trigger an interactive login.
    """

    pass
