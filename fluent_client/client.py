"""HTTP client facade.

Wires one ClientConfig, one httpx.Client, one RequestExecutor and one
ErrorRecorder together. One HttpClient belongs to one test iteration;
nothing here is shared between clients.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping, NamedTuple

import httpx

from fluent_client.error_recorder import ErrorRecorder
from fluent_client.executor import RequestExecutor
from fluent_client.models import (
    ClientConfig,
    ClientOptions,
    CredentialDefaults,
    ErrorRecord,
    RequestDescription,
    ResponseCase,
    SignalRConnection,
)
from fluent_client.options import coerce_options, generate_options
from fluent_client.route import DEFAULT_VERBS, Route

logger = logging.getLogger(__name__)


class HttpClient:
    """Client for HTTP requests with dynamic endpoint construction.

    Usage:
        with HttpClient({"host": "api.example.com"}) as client:
            client.dynamic.api.v2.users(1).get()
            client.request("get", body={"queryParams": {"page": 2}})
    """

    def __init__(
        self,
        options: ClientOptions | ClientConfig | Mapping[str, Any],
        *,
        credential_defaults: CredentialDefaults | None = None,
        recorder: ErrorRecorder | None = None,
        verbs: Iterable[str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            options: Client options, or an already resolved ClientConfig.
            credential_defaults: Environment-sourced credential fallbacks.
            recorder: ErrorRecorder to report failures to (one is created if None).
            verbs: Verb names that end a route chain. Defaults to get/post/put.
            transport: httpx transport override (e.g. httpx.MockTransport).

        Raises:
            ConfigurationError: If options cannot produce a base URL.
        """
        if isinstance(options, ClientConfig):
            self._config = options
        else:
            self._config = generate_options(options, credential_defaults)
        self._recorder = recorder or ErrorRecorder()
        self._verbs = frozenset(verb.lower() for verb in (verbs or DEFAULT_VERBS))
        self._http = httpx.Client(**self._build_client_kwargs(self._config, transport))
        self._executor = RequestExecutor(self._config, self._http, self._recorder)

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._http.close()

    @staticmethod
    def _build_client_kwargs(
        config: ClientConfig,
        transport: httpx.BaseTransport | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "headers": config.headers,
            "timeout": config.timeout,
            "verify": config.verify_ssl,
        }
        if transport is not None:
            kwargs["transport"] = transport
        return kwargs

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._config.base_url

    @property
    def recorder(self) -> ErrorRecorder:
        return self._recorder

    @property
    def last_error(self) -> ErrorRecord | None:
        return self._recorder.last_error

    @property
    def dynamic(self) -> Route:
        """A fresh, empty route chain bound to this client."""
        return Route(self.execute, verbs=self._verbs)

    def build_url(self, segments: Iterable[str]) -> str:
        return self._executor.build_url(segments)

    def execute(self, description: RequestDescription) -> ResponseCase:
        """Execute a request built by a route chain."""
        return self._executor.execute_description(description)

    def request(
        self,
        method: str,
        url: str | None = None,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> ResponseCase:
        """Send a request to an explicit URL, or to base_url when url is None.

        body and params follow the same rules as a route chain's verb call.
        """
        return self._executor.execute(method, url=url, body=body, params=params)

    def signalr_negotiate(
        self,
        method: str = "post",
        url: str | None = None,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> SignalRConnection | None:
        """Fetch SignalR hub connection details.

        Returns:
            SignalRConnection, or None if the response lacks connectionId or
            connectionToken.
        """
        merged = dict(params or {})
        merged["response_type"] = "text"
        response = self.request(method, url, body, merged)

        connection_id = ""
        connection_token = ""
        if response.status_code == 200 and response.body:
            try:
                data = json.loads(response.body)
            except ValueError:
                data = {}
            if isinstance(data, dict):
                connection_id = data.get("connectionId") or ""
                connection_token = data.get("connectionToken") or ""

        if not connection_id or not connection_token:
            logger.warning(
                "Websocket connection details not found: %s %s -> %s",
                response.method,
                response.url,
                response.status_code,
            )
            return None
        return SignalRConnection(connection_id=connection_id, connection_token=connection_token)


class ClientBundle(NamedTuple):
    """What create_client hands back."""

    dynamic: Route
    http_client: HttpClient
    options: ClientOptions


def create_client(
    options: ClientOptions | Mapping[str, Any],
    **kwargs: Any,
) -> ClientBundle:
    """Create an HttpClient and its dynamic route root in one step.

    Usage:
        dynamic, http_client, options = create_client({"host": "api.example.com"})
        dynamic.api.v1.users(1).get()
    """
    options = coerce_options(options)
    http_client = HttpClient(options, **kwargs)
    return ClientBundle(dynamic=http_client.dynamic, http_client=http_client, options=options)
