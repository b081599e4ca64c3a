"""Authenticator and header composition.

The Authenticator resolves credentials from explicit values first, then from
injected CredentialDefaults (read from the environment by the config loader).
A missing credential is not an error: it degrades to NoCredentials and the
request goes out without that kind of Authorization header.
"""

from __future__ import annotations

import base64
import logging
from typing import Mapping

from fluent_client.models import (
    BasicCredentials,
    BearerCredentials,
    CredentialDefaults,
    Credentials,
    NoCredentials,
)

logger = logging.getLogger(__name__)


DEFAULT_API_HEADERS: dict[str, str] = {
    "Content-Type": "application/json",
    "User-Agent": "fluent-client",
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


class Authenticator:
    """Produces Basic and Bearer credentials.

    Usage:
        auth = Authenticator(username="alice", password="s3cret")
        auth.basic_credential()   # BasicCredentials
        auth.bearer_credential()  # NoCredentials(scheme="bearer")
    """

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        token: str | None = None,
        defaults: CredentialDefaults | None = None,
    ) -> None:
        defaults = defaults or CredentialDefaults()
        self._username = username or defaults.username
        self._password = password or defaults.password
        self._token = token or defaults.token

    def basic_credential(self) -> BasicCredentials | NoCredentials:
        """Return Basic credentials, or NoCredentials if either part is missing."""
        if not self._username or not self._password:
            logger.debug("Username or password is missing, no basic authorization")
            return NoCredentials(scheme="basic")
        return BasicCredentials(username=self._username, password=self._password)

    def bearer_credential(self) -> BearerCredentials | NoCredentials:
        """Return a Bearer token, or NoCredentials if none is configured."""
        if not self._token:
            logger.debug("Token is missing, no token bearer authorization")
            return NoCredentials(scheme="bearer")
        return BearerCredentials(token=self._token)


def basic_authorization(credentials: BasicCredentials) -> str:
    """Format an Authorization header value for Basic credentials."""
    raw = f"{credentials.username}:{credentials.password}".encode("utf-8")
    return f"Basic {base64.b64encode(raw).decode('ascii')}"


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    lower = name.lower()
    return any(key.lower() == lower for key in headers)


def _without_header(headers: dict[str, str], name: str) -> dict[str, str]:
    lower = name.lower()
    return {key: value for key, value in headers.items() if key.lower() != lower}


def compose_headers(
    headers: Mapping[str, str] | None,
    *credentials: Credentials,
) -> dict[str, str]:
    """Merge Authorization into a private copy of headers.

    Precedence:
        - A caller-supplied Authorization header blocks Basic injection.
        - A Bearer token always replaces any Authorization header, so Bearer
          wins over Basic when both are configured.

    Args:
        headers: Caller headers. None selects DEFAULT_API_HEADERS.
        credentials: Any mix of Basic, Bearer and NoCredentials values.

    Returns:
        New dict; the caller's mapping is never modified.
    """
    source = DEFAULT_API_HEADERS if headers is None else headers
    caller_has_authorization = _has_header(source, "Authorization")
    composed = dict(source)

    # Basic first so that Bearer can override it regardless of argument order.
    for credential in credentials:
        if isinstance(credential, BasicCredentials):
            if caller_has_authorization:
                logger.debug("Authorization header already set, skipping basic authorization")
                continue
            composed = _without_header(composed, "Authorization")
            composed["Authorization"] = basic_authorization(credential)

    for credential in credentials:
        if isinstance(credential, BearerCredentials):
            composed = _without_header(composed, "Authorization")
            composed["Authorization"] = f"Bearer {credential.token}"

    return composed
