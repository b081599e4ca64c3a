"""Internal data models for fluent-client.

All models use Pydantic v2. Option models describe what the caller asked for;
ClientConfig is the resolved, immutable per-client configuration built once
by the options generator.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Path Formatting
# =============================================================================


class SegmentStyle(str, Enum):
    """How non-numeric path segments are rewritten when a URL is built."""

    KEBAB_CASE = "kebab-case"  # user_profiles -> user-profiles (default)
    SNAKE_CASE = "snake_case"  # unchanged
    CAMEL_CASE = "camelCase"  # user_profiles -> userProfiles
    PASCAL_CASE = "PascalCase"  # user_profiles -> UserProfiles
    DOT_NOTATION = "dot.notation"  # user_profiles -> user.profiles
    CONSTANT_CASE = "CONSTANT_CASE"  # user_profiles -> USER_PROFILES


# =============================================================================
# Credentials
# =============================================================================


class BasicCredentials(BaseModel):
    """Username/password pair for HTTP Basic authentication."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["basic"] = "basic"
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class BearerCredentials(BaseModel):
    """Token for HTTP Bearer authentication."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["bearer"] = "bearer"
    token: str = Field(min_length=1)


class NoCredentials(BaseModel):
    """No usable credential of the given scheme. Not an error."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["none"] = "none"
    scheme: Literal["basic", "bearer"] = Field(description="Scheme that had no credential")


Credentials = BasicCredentials | BearerCredentials | NoCredentials


class CredentialDefaults(BaseModel):
    """Fallback credentials read once from the environment and injected.

    Empty strings are kept as-is; the authenticator treats them as absent.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    username: str = ""
    password: str = ""
    token: str = ""


# =============================================================================
# Client Options and Resolved Configuration
# =============================================================================


class ClientOptions(BaseModel):
    """Caller-supplied options for an HTTP client or WebSocket session.

    Either base_url or host must be given. When both are present base_url wins.
    """

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="", description="Host name, optionally with :port")
    protocol: str = Field(default="https", description="URL scheme without '://'")
    port: int | None = Field(default=None, ge=1, le=65535, description="Explicit port")
    base_url: str = Field(default="", description="Explicit origin, overrides host/protocol/port")
    headers: dict[str, str] | None = Field(
        default=None,
        description="Default headers; None means use DEFAULT_API_HEADERS",
    )
    username: str | None = Field(default=None, description="Basic auth username")
    password: str | None = Field(default=None, description="Basic auth password")
    token: str | None = Field(default=None, description="Bearer token")
    soap_content_type: str = Field(
        default="application/soap+xml",
        description="Content-Type forced onto SOAP requests",
    )
    timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Passed through to the transport")
    segment_style: SegmentStyle = Field(
        default=SegmentStyle.KEBAB_CASE, description="Path segment naming style"
    )
    # WebSocket-only settings
    timeout_duration: float = Field(
        default=30.0, gt=0, description="WebSocket close timeout in seconds"
    )
    session_id: str | None = Field(default=None, description="WebSocket session identifier")
    tags: dict[str, str] = Field(default_factory=dict, description="WebSocket session tags")

    @field_validator("protocol")
    @classmethod
    def normalize_protocol(cls, value: str) -> str:
        value = value.strip().lower()
        if value.endswith("://"):
            value = value[:-3]
        return value


class ClientConfig(BaseModel):
    """Resolved per-client configuration. Never mutated after construction."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = Field(description="Host as given (may be empty when base_url was given)")
    protocol: str = Field(description="URL scheme")
    port: int | None = Field(default=None, description="Explicit port, if any")
    base_url: str = Field(min_length=1, description="Canonical origin without trailing slash")
    headers: dict[str, str] = Field(description="Default headers including Authorization")
    username: str | None = None
    password: str | None = None
    token: str | None = None
    soap_content_type: str = "application/soap+xml"
    timeout: float = 30.0
    verify_ssl: bool = True
    segment_style: SegmentStyle = SegmentStyle.KEBAB_CASE


# =============================================================================
# Requests and Responses
# =============================================================================


class RequestDescription(BaseModel):
    """One request built by a route chain, consumed once by the executor."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: str = Field(description="Lowercase HTTP verb")
    segments: tuple[str, ...] = Field(description="Raw path segments in order")
    body: Any = Field(default=None, description="Request body as given by the caller")
    params: dict[str, Any] = Field(default_factory=dict, description="Per-request options")

    @model_validator(mode="after")
    def check_segments(self) -> Self:
        if not self.segments:
            raise ValueError("a request needs at least one path segment")
        if any(not segment for segment in self.segments):
            raise ValueError("path segments must be non-empty")
        return self


class ErrorRecord(BaseModel):
    """Structured detail of the last failed response."""

    model_config = ConfigDict(extra="forbid")

    request: str = Field(description="'METHOD url'")
    request_headers: dict[str, str] = Field(default_factory=dict)
    status: int = Field(description="HTTP status, 0 when no response arrived")
    error_code: str | None = Field(default=None, description="Transport error code, if any")
    error_body: Any = Field(default=None, description="Response body or transport error message")
    response_headers: dict[str, str] = Field(default_factory=dict)
    timestamp: str = Field(description="ISO-8601 time the record was created")
    tags: dict[str, Any] = Field(default_factory=dict)


class ResponseCase(BaseModel):
    """One HTTP response (or its absence) as seen by the caller.

    Header keys are lowercase; repeated headers are joined with ', '.
    status_code is 0 when the transport failed before a response arrived.
    """

    model_config = ConfigDict(extra="forbid")

    method: str = Field(description="Uppercase HTTP method that was sent")
    url: str = Field(description="Final request URL including query string")
    request_headers: dict[str, str] = Field(default_factory=dict)
    status_code: int = Field(description="HTTP status code, 0 on transport failure")
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = Field(default=None, description="Parsed body (JSON value, XML dict or text)")
    body_base64: str | None = Field(default=None, description="Body as base64 if binary")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")
    http_version: str = Field(default="HTTP/1.1")
    error_code: str | None = Field(default=None, description="Transport error code")
    error: str | None = Field(default=None, description="Transport error message")
    error_record: ErrorRecord | None = Field(
        default=None, description="Set when the response failed validation"
    )

    @model_validator(mode="after")
    def check_body_exclusivity(self) -> Self:
        if self.body is not None and self.body_base64 is not None:
            raise ValueError("body and body_base64 are mutually exclusive")
        return self

    @property
    def ok(self) -> bool:
        """True for 2xx responses."""
        return 200 <= self.status_code < 300

    @property
    def is_accepted(self) -> bool:
        """True for 2xx, 4xx and 5xx: a real response the caller can check."""
        return self.ok or 400 <= self.status_code < 600

    def json(self) -> Any:
        """Return the body as a JSON value, decoding text bodies on demand."""
        if isinstance(self.body, str):
            return json.loads(self.body)
        return self.body


class SignalRConnection(BaseModel):
    """Connection details returned by a SignalR negotiate call."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    connection_id: str
    connection_token: str


# =============================================================================
# Runtime Configuration File
# =============================================================================


class RuntimeConfig(BaseModel):
    """Top-level YAML configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    targets: dict[str, ClientOptions] = Field(description="Target name -> client options")
    log_level: str = Field(default="info", description="debug, info, warn or error")
    verbose: bool = Field(default=False, description="Force debug logging with detail")
