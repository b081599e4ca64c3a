"""Options generator - resolves caller options into a ClientConfig.

Composes base URL resolution, the Authenticator and header composition once,
at client construction. Requests read the resulting ClientConfig; it is
frozen and never recomputed per request.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError

from fluent_client.auth import Authenticator, compose_headers
from fluent_client.models import (
    BasicCredentials,
    BearerCredentials,
    ClientConfig,
    ClientOptions,
    CredentialDefaults,
)

logger = logging.getLogger(__name__)


# Ports implied by each scheme; an explicit port equal to these is omitted.
DEFAULT_PORTS: dict[str, int] = {
    "https": 443,
    "wss": 443,
    "http": 80,
    "ws": 80,
}


class ConfigurationError(ValueError):
    """Raised when client options cannot produce a usable configuration."""


def resolve_base_url(
    base_url: str | None = None,
    host: str | None = None,
    protocol: str = "https",
    port: int | None = None,
) -> str:
    """Compute the canonical origin for a client.

    An explicit base_url is authoritative and returned without a trailing
    slash. Otherwise the origin is synthesized as protocol://host[:port],
    leaving out the port when it is the scheme's default.

    Raises:
        ConfigurationError: If neither host nor base_url is given.
    """
    if base_url:
        return base_url.rstrip("/")
    if not host:
        raise ConfigurationError("The host or base_url must be provided.")

    protocol = (protocol or "https").lower()
    if port is None or DEFAULT_PORTS.get(protocol) == port:
        return f"{protocol}://{host}"
    return f"{protocol}://{host}:{port}"


def coerce_options(options: ClientOptions | Mapping[str, Any] | None) -> ClientOptions:
    """Validate a mapping into ClientOptions.

    Raises:
        ConfigurationError: If the mapping has unknown keys or invalid values.
    """
    if isinstance(options, ClientOptions):
        return options
    try:
        return ClientOptions.model_validate(dict(options or {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid client options: {e}") from e


def generate_options(
    options: ClientOptions | Mapping[str, Any] | None,
    defaults: CredentialDefaults | None = None,
) -> ClientConfig:
    """Build the immutable ClientConfig for one client.

    Args:
        options: Caller options (model or plain mapping).
        defaults: Environment-sourced credential fallbacks, injected by the
                  caller. None means no fallback.

    Raises:
        ConfigurationError: If options are invalid or no origin can be derived.
    """
    options = coerce_options(options)
    base_url = resolve_base_url(
        base_url=options.base_url,
        host=options.host,
        protocol=options.protocol,
        port=options.port,
    )

    authenticator = Authenticator(
        username=options.username,
        password=options.password,
        token=options.token,
        defaults=defaults,
    )
    basic = authenticator.basic_credential()
    bearer = authenticator.bearer_credential()
    headers = compose_headers(options.headers, basic, bearer)

    config = ClientConfig(
        host=options.host,
        protocol=options.protocol,
        port=options.port,
        base_url=base_url,
        headers=headers,
        username=basic.username if isinstance(basic, BasicCredentials) else None,
        password=basic.password if isinstance(basic, BasicCredentials) else None,
        token=bearer.token if isinstance(bearer, BearerCredentials) else None,
        soap_content_type=options.soap_content_type,
        timeout=options.timeout,
        verify_ssl=options.verify_ssl,
        segment_style=options.segment_style,
    )
    logger.debug("Resolved client configuration for %s", base_url)
    return config
