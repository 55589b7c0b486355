"""Shared helper for POSTing OAuth2 grants to a token endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from smartauth.auth.credentials import Credentials
from smartauth.exceptions import AuthError

logger = logging.getLogger("smartauth.auth.endpoints")

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


async def request_tokens(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, str],
    *,
    error: type[AuthError],
    previous: Credentials | None = None,
    unavailable: type[AuthError] | None = None,
) -> Credentials:
    """POST ``payload`` to ``url`` and parse the response into Credentials.

    Args:
        client: HTTP client used for the request.
        url: Token endpoint.
        payload: Form fields of the grant.
        error: Exception class raised when the grant fails.
        previous: Credentials whose refresh token and scope are kept when
            the response omits them.
        unavailable: Exception class raised instead of ``error`` for
            transport failures and 5xx answers.

    Raises:
        error: If the request fails, the endpoint answers with an error
            status, or the response lacks the required fields.
        unavailable: If given, when the endpoint is unreachable or answers
            with a server error.
    """
    grant = payload.get("grant_type", "unknown")
    try:
        resp = await client.post(url, data=payload, headers=_FORM_HEADERS)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        logger.warning("Token endpoint rejected %s grant: HTTP %d", grant, status)
        message = f"Token endpoint returned HTTP {status} for {grant} grant"
        if unavailable is not None and status >= 500:
            raise unavailable(message) from e
        raise error(message) from e
    except httpx.HTTPError as e:
        logger.warning("Token endpoint request for %s grant failed: %s", grant, e)
        raise (unavailable or error)(f"Token request to {url} failed: {e}") from e

    try:
        data: Any = resp.json()
    except ValueError as e:
        raise error(f"Token endpoint returned a non-JSON response for {grant} grant") from e

    if not isinstance(data, dict):
        raise error(f"Token endpoint returned an unexpected response for {grant} grant")

    try:
        return Credentials.from_token_response(data, previous=previous)
    except (KeyError, TypeError, ValueError) as e:
        raise error(f"Token endpoint response for {grant} grant is incomplete ({e})") from e
