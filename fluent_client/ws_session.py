"""WebSocket session with a close-timeout and SignalR-style hub framing.

A session connects as soon as it is constructed and then moves through
connecting -> open -> closing -> closed. Closed is terminal; there is no
reconnection.

Events (open, message, close, error) are queued and delivered by run(), a
single-threaded loop. A handler runs to completion before the next event is
delivered, and run() returns once the session is closed:

    session = WebSocketSession({"host": "localhost", "port": 8080, "protocol": "ws"})
    session.add_event_listener("open", lambda event: session.send("ping"))
    session.add_event_listener("message", lambda event: session.close())
    session.start_timeout(5)
    session.run()

The close-timeout is a deadline checked inside the loop, so only one can be
pending per session. When it expires the transport is dropped and a close
event with code 1006 ("Connection Timeout") is delivered.
"""

from __future__ import annotations

import json
import logging
import socket
import ssl
import time
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from fluent_client.auth import Authenticator, compose_headers
from fluent_client.models import ClientOptions, CredentialDefaults
from fluent_client.options import coerce_options, resolve_base_url

logger = logging.getLogger(__name__)


RECORD_SEPARATOR = "\x1e"

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
TIMEOUT_REASON = "Connection Timeout"

EVENT_TYPES = ("open", "message", "close", "error")

# http(s) origins are accepted and mapped onto the matching WebSocket scheme.
_WS_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}

# Request-body headers from the API defaults; the upgrade request has no body.
_HANDSHAKE_EXCLUDED_HEADERS = frozenset({"content-type"})


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class OpenEvent:
    url: str
    session_id: str


@dataclass(frozen=True)
class MessageEvent:
    """One inbound frame. data is str for text frames, bytes for binary."""

    data: str | bytes

    def json(self) -> Any:
        return json.loads(self.data)

    @property
    def payload(self) -> Any:
        """The frame decoded as JSON, or the raw data if it is not JSON."""
        try:
            return self.json()
        except ValueError:
            return self.data


@dataclass(frozen=True)
class CloseEvent:
    code: int
    reason: str = ""


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    error: BaseException | None = None


Handler = Callable[[Any], None]


def resolve_ws_url(options: ClientOptions) -> str:
    """Resolve the session URL the same way HTTP base URLs are resolved.

    Raises:
        ConfigurationError: If neither host nor base_url is given.
    """
    url = resolve_base_url(
        base_url=options.base_url,
        host=options.host,
        protocol=options.protocol,
        port=options.port,
    )
    scheme, sep, rest = url.partition("://")
    if sep and scheme.lower() in _WS_SCHEMES:
        return f"{_WS_SCHEMES[scheme.lower()]}://{rest}"
    return url


class WebSocketSession:
    """One WebSocket connection with its tags, headers and close-timeout.

    Attributes:
        url: Resolved ws:// or wss:// URL.
        session_id: Generated (uuid4) unless supplied in options.
        tags: {"sessionId": session_id, **options.tags}.
        timeout_duration: Default start_timeout() duration in seconds.
    """

    def __init__(
        self,
        options: ClientOptions | Mapping[str, Any],
        *,
        credential_defaults: CredentialDefaults | None = None,
        connect: Callable[..., Any] | None = None,
        open_timeout: float | None = 10.0,
    ) -> None:
        """Resolve options and open the connection.

        Args:
            options: Client options; headers=None derives them from credentials.
            credential_defaults: Environment-sourced credential fallbacks.
            connect: Connection factory, defaults to websockets' sync connect.
            open_timeout: Seconds allowed for the opening handshake.

        Raises:
            ConfigurationError: If options are invalid or no URL can be derived.
        """
        options = coerce_options(options)
        self.url = resolve_ws_url(options)
        if options.headers is None:
            authenticator = Authenticator(
                username=options.username,
                password=options.password,
                token=options.token,
                defaults=credential_defaults,
            )
            self._headers = compose_headers(
                None, authenticator.basic_credential(), authenticator.bearer_credential()
            )
        else:
            self._headers = dict(options.headers)

        self.session_id = options.session_id or str(uuid.uuid4())
        self.tags: dict[str, str] = {"sessionId": self.session_id, **options.tags}
        self.timeout_duration = options.timeout_duration

        self._verify_ssl = options.verify_ssl
        self._connect = connect or ws_connect
        self._open_timeout = open_timeout
        self._context: Any = None
        self._connection: Any = None
        self._state = SessionState.CONNECTING
        self._deadline: float | None = None
        self._events: deque[tuple[str, Any]] = deque()
        self._listeners: dict[str, list[Handler]] = {name: [] for name in EVENT_TYPES}
        self._targets: dict[str, Handler] = {}

        logger.info("Created WebSocket session with url %s and sessionId %s", self.url, self.session_id)
        self._open()

    def __enter__(self) -> "WebSocketSession":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
        self._release()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    @property
    def timeout_pending(self) -> bool:
        return self._deadline is not None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def _open(self) -> None:
        handshake_headers = [
            (name, value)
            for name, value in self._headers.items()
            if name.lower() not in _HANDSHAKE_EXCLUDED_HEADERS
        ]
        kwargs: dict[str, Any] = {
            "additional_headers": handshake_headers,
            "open_timeout": self._open_timeout,
        }
        # websockets adds its own User-Agent unless told not to.
        if any(name.lower() == "user-agent" for name, _ in handshake_headers):
            kwargs["user_agent_header"] = None
        if self.url.startswith("wss://") and not self._verify_ssl:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            kwargs["ssl"] = context

        try:
            self._context = self._connect(self.url, **kwargs)
            self._connection = self._context.__enter__()
        except (OSError, WebSocketException) as e:
            logger.warning("WebSocket connection to %s failed: %s", self.url, e)
            self._queue("error", ErrorEvent(message=f"connection failed: {e}", error=e))
            self._finish(CloseEvent(ABNORMAL_CLOSURE, str(e)))
            return

        self._state = SessionState.OPEN
        self._queue("open", OpenEvent(url=self.url, session_id=self.session_id))

    def close(self, code: int = NORMAL_CLOSURE, reason: str = "Normal Closure") -> None:
        """Close the connection. No-op once closing or closed.

        Code 1006 cannot be sent on the wire; asking for it drops the
        transport and reports 1006 locally.
        """
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self._state = SessionState.CLOSING
        self.cancel_timeout()

        if code == ABNORMAL_CLOSURE:
            self._abort_transport()
        else:
            self._connection.close(code, reason)
        logger.info("WebSocket connection closed with code %s: %s", code, reason)
        self._finish(CloseEvent(code, reason))

    def _finish(self, event: CloseEvent) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        self.cancel_timeout()
        self._queue("close", event)

    def _release(self) -> None:
        """Leave the connection context entered by _open. Runs at most once."""
        context, self._context = self._context, None
        if context is None:
            return
        try:
            context.__exit__(None, None, None)
        except (OSError, WebSocketException) as e:
            logger.debug("Releasing connection to %s failed: %s", self.url, e)

    def _abort_transport(self) -> None:
        sock = getattr(self._connection, "socket", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket shutdown failed: %s", e)
        sock.close()

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send(self, message: Any = None) -> None:
        """Serialize message as JSON text and send it."""
        text = json.dumps({} if message is None else message)
        self.send_raw(text)
        logger.info("Sent message: %s", text)

    def send_raw(self, data: str | bytes) -> None:
        """Send a frame as-is. Sending on a closed connection is logged, not raised."""
        if self._connection is None:
            logger.warning("Cannot send on %s: connection was never opened", self.url)
            return
        try:
            self._connection.send(data)
        except ConnectionClosed as e:
            logger.warning("Cannot send on %s: %s", self.url, e)

    # -------------------------------------------------------------------------
    # Timeout
    # -------------------------------------------------------------------------

    def start_timeout(self, duration: float | None = None) -> None:
        """Arm the close-timeout, replacing any pending one.

        Args:
            duration: Seconds until the forced close. Defaults to timeout_duration.
        """
        if self._state is SessionState.CLOSED:
            logger.debug("Session %s is closed, timeout not armed", self.session_id)
            return
        duration = self.timeout_duration if duration is None else duration
        if self._deadline is not None:
            logger.debug("Replacing pending timeout")
        self._deadline = time.monotonic() + duration
        logger.info("Starting timeout for %s s", duration)

    def cancel_timeout(self) -> None:
        if self._deadline is not None:
            self._deadline = None
            logger.debug("Timeout cancelled for session %s", self.session_id)

    def _expire(self) -> None:
        logger.info("Closing WebSocket connection due to timeout.")
        self._deadline = None
        self._state = SessionState.CLOSING
        self._abort_transport()
        self._finish(CloseEvent(ABNORMAL_CLOSURE, TIMEOUT_REASON))

    # -------------------------------------------------------------------------
    # Event loop
    # -------------------------------------------------------------------------

    def add_event_listener(self, event: str = "message", handler: Handler | None = None) -> None:
        """Register handler for one of: open, message, close, error.

        Raises:
            ValueError: If event is not a known event type.
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown event '{event}', expected one of {', '.join(EVENT_TYPES)}")
        self._listeners[event].append(handler or (lambda _event: None))

    def _queue(self, name: str, event: Any) -> None:
        self._events.append((name, event))

    def run(self) -> None:
        """Deliver events until the session is closed.

        If a handler raises, the transport is dropped and the exception
        propagates; no timer is left pending.
        """
        try:
            while True:
                self._dispatch_pending()
                if self._state is SessionState.CLOSED:
                    return
                self._receive()
        finally:
            if self._state is not SessionState.CLOSED:
                self._abort_transport()
                self._state = SessionState.CLOSED
            self.cancel_timeout()
            self._release()

    def _dispatch_pending(self) -> None:
        while self._events:
            name, event = self._events.popleft()
            if name in ("close", "error"):
                self.cancel_timeout()
            for handler in list(self._listeners[name]):
                handler(event)

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _receive(self) -> None:
        """Wait for one frame, or expire the timeout.

        The deadline is checked before and after recv(): a peer that always
        has a frame ready must not keep the session alive past it.
        """
        if self._deadline_passed():
            self._expire()
            return

        timeout = None
        if self._deadline is not None:
            timeout = max(0.0, self._deadline - time.monotonic())

        try:
            data = self._connection.recv(timeout)
        except TimeoutError:
            if self._deadline_passed():
                self._expire()
            return
        except ConnectionClosed as e:
            if e.rcvd is not None:
                self._finish(CloseEvent(e.rcvd.code, e.rcvd.reason))
            else:
                self._queue("error", ErrorEvent(message=f"connection lost: {e}", error=e))
                self._finish(CloseEvent(ABNORMAL_CLOSURE, "Abnormal Closure"))
            return

        if self._deadline_passed():
            self._expire()
            return
        self._queue("message", MessageEvent(data))

    # -------------------------------------------------------------------------
    # SignalR hub framing
    # -------------------------------------------------------------------------

    def signalr_handshake(self, protocol: str = "json", version: int = 1) -> None:
        """Send the hub protocol negotiation frame."""
        message = json.dumps({"protocol": protocol, "version": version}, separators=(",", ":"))
        self.send_raw(f"{message}{RECORD_SEPARATOR}")

    def on_target(self, target: str, handler: Handler) -> None:
        """Route hub invocations with this target to handler (receives the frame dict)."""
        self._targets[target] = handler

    def setup_signalr_event_listeners(self) -> None:
        """Handshake on open, dispatch frames by target and arm the timeout."""
        logger.info("Setting up WebSocket event listeners.")
        self.add_event_listener("open", self._on_signalr_open)
        self.add_event_listener("message", self._on_signalr_message)
        self.start_timeout()

    def tear_down(self) -> None:
        """Log close and error events."""
        self.add_event_listener("close", self._on_close)
        self.add_event_listener("error", self._on_error)

    def _on_signalr_open(self, event: OpenEvent) -> None:
        self.signalr_handshake()
        logger.info("SignalR Hub connection opened.")

    def _on_signalr_message(self, event: MessageEvent) -> None:
        data = event.data
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")

        for record in data.split(RECORD_SEPARATOR):
            record = record.strip()
            if not record:
                continue
            try:
                body = json.loads(record)
            except ValueError as e:
                logger.warning("Error parsing message: %s", e)
                continue

            if not isinstance(body, dict) or not body.get("target"):
                logger.debug("SignalR Hub connection message received.")
                continue
            handler = self._targets.get(body["target"])
            if handler is None:
                logger.info("Unhandled message: %s", json.dumps(body))
                continue
            handler(body)

    def _on_close(self, event: CloseEvent) -> None:
        logger.info("WebSocket connection closed: code=%s reason=%s", event.code, event.reason)

    def _on_error(self, event: ErrorEvent) -> None:
        logger.warning("WebSocket connection error: %s", event.message)
