"""Executor - Builds the final request, sends it and normalizes the response.

The executor turns a method, path segments, body and per-request options into
one HTTP call:

    URL   = base_url + '/' + formatted segments  (or an explicit URL)
    Body  = SOAP envelope (verbatim) or JSON text, chosen by the body's shape

Every outcome comes back as a ResponseCase. Transport failures never raise;
they become a ResponseCase with status_code 0 and an error code. Responses
outside the 2xx/4xx/5xx envelope are handed to the ErrorRecorder.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping
from urllib.parse import urlencode
from xml.etree.ElementTree import ParseError

import httpx

from fluent_client.error_recorder import ErrorRecorder
from fluent_client.models import ClientConfig, RequestDescription, ResponseCase
from fluent_client.path_formatter import build_path
from fluent_client.soap import query_params_key, soap_call_from_body, xml_to_dict

logger = logging.getLogger(__name__)


# Per-request option keys accepted in `params`.
REQUEST_OPTION_KEYS = frozenset(
    {"headers", "timeout", "response_type", "tags", "follow_redirects", "soap_content_type"}
)
RESPONSE_TYPES = frozenset({"text", "json", "binary"})


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters in a header value with '?'.

    HTTP headers must contain only ASCII characters per RFC 7230.
    """
    return value.encode("ascii", errors="replace").decode("ascii")


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_params(query: Mapping[str, Any] | None) -> str:
    """Encode a mapping as a query string.

    Keys keep their insertion order. List values become repeated keys and
    None values are dropped.

    Returns:
        '?k=v&...' or '' when nothing remains to encode.
    """
    if not query:
        return ""

    pairs: list[tuple[str, str]] = []
    for key, value in query.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((str(key), _query_value(item)) for item in value if item is not None)
        else:
            pairs.append((str(key), _query_value(value)))

    encoded = urlencode(pairs)
    return f"?{encoded}" if encoded else ""


def merge_headers(
    base: Mapping[str, str],
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge headers case-insensitively; overrides win and keep their casing."""
    merged = dict(base)
    for key, value in (overrides or {}).items():
        lower = key.lower()
        merged = {k: v for k, v in merged.items() if k.lower() != lower}
        merged[key] = value
    return merged


@dataclass(frozen=True)
class PreparedRequest:
    """Wire-ready request: final URL, header overrides and encoded body."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes | None = None


class RequestExecutor:
    """Executes requests for one client configuration.

    Usage:
        with httpx.Client() as http:
            executor = RequestExecutor(config, http, ErrorRecorder())
            response = executor.execute("get", segments=("api", "v2", "breeds"))
    """

    def __init__(
        self,
        config: ClientConfig,
        client: httpx.Client,
        recorder: ErrorRecorder | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._recorder = recorder or ErrorRecorder()

    @property
    def recorder(self) -> ErrorRecorder:
        return self._recorder

    def build_url(self, segments: Iterable[str]) -> str:
        """Join base_url and formatted segments with single '/' separators.

        No segments means the base URL itself.
        """
        path = build_path(segments, self._config.segment_style)
        return f"{self._config.base_url}/{path}" if path else self._config.base_url

    def execute_description(self, description: RequestDescription) -> ResponseCase:
        """Execute a request built by a route chain."""
        return self.execute(
            description.method,
            body=description.body,
            params=description.params,
            segments=description.segments,
        )

    def execute(
        self,
        method: str,
        url: str | None = None,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
        segments: Iterable[str] = (),
    ) -> ResponseCase:
        """Build, send and validate one request.

        Args:
            method: HTTP verb, any case.
            url: Explicit absolute URL. If omitted, built from segments.
            body: Request body (SOAP call mapping, JSON value, str or bytes).
            params: Per-request options, layered over client defaults.
            segments: Path segments used when url is omitted.

        Returns:
            ResponseCase. error_record is set when validation failed.
        """
        options = self._resolve_options(params)
        prepared = self.prepare(method, url, body, options, segments)
        response = self._send(prepared, options)
        logger.debug("Response: %s %s -> %s", prepared.method, prepared.url, response.status_code)
        return self._validate(response, options["tags"])

    def prepare(
        self,
        method: str,
        url: str | None = None,
        body: Any = None,
        options: Mapping[str, Any] | None = None,
        segments: Iterable[str] = (),
    ) -> PreparedRequest:
        """Resolve the final URL, header overrides and wire body.

        The caller's body is never modified.
        """
        options = options if options is not None else self._resolve_options(None)
        url = url or self.build_url(segments)
        headers: dict[str, str] = {
            key: _sanitize_header_value(str(value))
            for key, value in (options.get("headers") or {}).items()
        }
        content: bytes | None = None

        soap = soap_call_from_body(body)
        if soap is not None:
            url = f"{url.rstrip('/')}/{soap.path}"
            headers = merge_headers(
                headers,
                {"Content-Type": options.get("soap_content_type") or self._config.soap_content_type},
            )
            if soap.action and not self._has_header(headers, "SOAPAction"):
                headers["SOAPAction"] = soap.action
            content = soap.envelope.encode("utf-8")
        elif isinstance(body, Mapping):
            remainder = dict(body)
            key = query_params_key(remainder)
            if key is not None:
                query = remainder.pop(key)
                url = self._append_query(url, query if isinstance(query, Mapping) else None)
            if remainder:
                content = self._encode_json(remainder, headers)
        elif isinstance(body, (bytes, bytearray)):
            content = bytes(body)
        elif isinstance(body, str):
            content = body.encode("utf-8")
        elif body is not None:
            content = self._encode_json(body, headers)

        return PreparedRequest(method=method.upper(), url=url, headers=headers, content=content)

    def _resolve_options(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        """Layer per-request params over client defaults."""
        options: dict[str, Any] = {
            "headers": {},
            "timeout": self._config.timeout,
            "response_type": None,
            "tags": {},
            "follow_redirects": False,
            "soap_content_type": None,
        }
        for key, value in (params or {}).items():
            if key not in REQUEST_OPTION_KEYS:
                logger.warning("Ignoring unknown request option '%s'", key)
                continue
            options[key] = value

        if options["response_type"] is not None and options["response_type"] not in RESPONSE_TYPES:
            logger.warning(
                "Unknown response_type '%s', falling back to content-type detection",
                options["response_type"],
            )
            options["response_type"] = None
        return options

    def _has_header(self, overrides: Mapping[str, str], name: str) -> bool:
        lower = name.lower()
        return any(key.lower() == lower for key in overrides) or any(
            key.lower() == lower for key in self._config.headers
        )

    def _encode_json(self, value: Any, headers: dict[str, str]) -> bytes:
        if not self._has_header(headers, "Content-Type"):
            headers["Content-Type"] = "application/json"
        return json.dumps(value).encode("utf-8")

    @staticmethod
    def _append_query(url: str, query: Mapping[str, Any] | None) -> str:
        query_string = build_query_params(query)
        if query_string and "?" in url:
            return f"{url}&{query_string[1:]}"
        return url + query_string

    def _send(self, prepared: PreparedRequest, options: Mapping[str, Any]) -> ResponseCase:
        """Send a prepared request. Transport failures become status 0 responses."""
        request_headers = merge_headers(self._config.headers, prepared.headers)

        try:
            start_time = time.perf_counter()

            http_response = self._client.request(
                method=prepared.method,
                url=prepared.url,
                headers=prepared.headers if prepared.headers else None,
                content=prepared.content,
                timeout=options["timeout"],
                follow_redirects=bool(options["follow_redirects"]),
            )

            elapsed_ms = (time.perf_counter() - start_time) * 1000

        except httpx.TimeoutException as e:
            return self._transport_failure(prepared, request_headers, "timeout", f"request timeout: {e}")
        except httpx.ConnectError as e:
            return self._transport_failure(prepared, request_headers, "connect_error", f"connection error: {e}")
        except httpx.RequestError as e:
            return self._transport_failure(prepared, request_headers, "request_error", f"request error: {e}")
        except UnicodeEncodeError as e:
            return self._transport_failure(
                prepared,
                request_headers,
                "encoding_error",
                f"non-ASCII characters in request: {e.object[e.start:e.end]!r} at position {e.start}",
            )

        return self._convert_response(
            http_response, prepared, request_headers, elapsed_ms, options["response_type"]
        )

    @staticmethod
    def _transport_failure(
        prepared: PreparedRequest,
        request_headers: dict[str, str],
        error_code: str,
        message: str,
    ) -> ResponseCase:
        logger.warning("%s %s failed: %s", prepared.method, prepared.url, message)
        return ResponseCase(
            method=prepared.method,
            url=prepared.url,
            request_headers=request_headers,
            status_code=0,
            error_code=error_code,
            error=message,
        )

    def _convert_response(
        self,
        response: httpx.Response,
        prepared: PreparedRequest,
        request_headers: dict[str, str],
        elapsed_ms: float,
        response_type: str | None,
    ) -> ResponseCase:
        """Convert an httpx Response to a ResponseCase.

        Body by response_type:
            text   -> str
            json   -> parsed value (text if not valid JSON)
            binary -> base64
            None   -> by content-type: JSON parsed, XML via xml_to_dict,
                      text/* as str, anything else base64
        The XML branch comes before text/* because text/xml is XML.
        """
        headers: dict[str, str] = {}
        for key, value in response.headers.multi_items():
            key_lower = key.lower()
            headers[key_lower] = f"{headers[key_lower]}, {value}" if key_lower in headers else value

        body: Any = None
        body_base64: str | None = None
        content_type = (response.headers.get("content-type") or "").lower()

        if response.content:
            if response_type == "binary":
                body_base64 = base64.b64encode(response.content).decode("ascii")
            elif response_type == "text":
                body = response.text
            elif response_type == "json" or "json" in content_type:
                try:
                    body = response.json()
                except ValueError:
                    body = response.text
            elif "xml" in content_type:
                try:
                    body = xml_to_dict(response.content)
                except ParseError:
                    # Not valid XML despite content-type
                    body = response.text
            elif content_type.startswith("text/"):
                body = response.text
            else:
                body_base64 = base64.b64encode(response.content).decode("ascii")

        return ResponseCase(
            method=prepared.method,
            url=prepared.url,
            request_headers=request_headers,
            status_code=response.status_code,
            headers=headers,
            body=body,
            body_base64=body_base64,
            elapsed_ms=elapsed_ms,
            http_version=getattr(response, "http_version", None) or "HTTP/1.1",
        )

    def _validate(self, response: ResponseCase, tags: Mapping[str, Any]) -> ResponseCase:
        """Record responses outside the 2xx/4xx/5xx envelope."""
        is_error = not response.is_accepted
        record = self._recorder.record(is_error, response, tags=tags)
        if record is None:
            return response
        return response.model_copy(update={"error_record": record})
