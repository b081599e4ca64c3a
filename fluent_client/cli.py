"""CLI entry point for fluent-client.

Sends one HTTP request or runs one WebSocket session against a target from a
runtime config file:

    fluent-client request --config targets.yaml --target mock get api/v2/breeds/42
    fluent-client ws --config targets.yaml --target echo --send '"ping"'
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fluent_client.client import HttpClient
from fluent_client.config_loader import (
    ConfigError,
    get_target,
    load_credential_defaults,
    load_runtime_config,
)
from fluent_client.log import LOG_LEVELS, configure_logging
from fluent_client.models import ClientOptions, ResponseCase, RuntimeConfig
from fluent_client.options import ConfigurationError
from fluent_client.ws_session import (
    RECORD_SEPARATOR,
    CloseEvent,
    ErrorEvent,
    MessageEvent,
    WebSocketSession,
)


def positive_float(value: str) -> float:
    """Parse and validate a positive float value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def parse_key_value(value: str) -> tuple[str, str]:
    """Parse KEY=VALUE.

    Raises:
        argparse.ArgumentTypeError: If there is no '=' or the key is empty.
    """
    key, sep, item = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Invalid format '{value}'. Expected KEY=VALUE")
    return key, item


def parse_header(value: str) -> tuple[str, str]:
    """Parse 'Name: value'."""
    name, sep, item = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Invalid header '{value}'. Expected 'Name: value'")
    return name.strip(), item.strip()


def parse_json_value(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON: {e}")


def _message_value(value: str) -> Any:
    """JSON if it parses, the literal string otherwise."""
    try:
        return json.loads(value)
    except ValueError:
        return value


@dataclass
class RequestArgs:
    """Parsed arguments for request mode."""

    config: Path
    target: str
    method: str
    path: str
    query: list[tuple[str, str]] = field(default_factory=list)
    headers: list[tuple[str, str]] = field(default_factory=list)
    json_body: Any = None
    soap_path: str | None = None
    soap_body_file: Path | None = None
    soap_action: str | None = None
    soap_content_type: str | None = None
    timeout: float | None = None
    follow_redirects: bool = False
    verbose: bool = False
    log_level: str | None = None


@dataclass
class WsArgs:
    """Parsed arguments for ws mode."""

    config: Path
    target: str
    send: list[str] = field(default_factory=list)
    signalr: bool = False
    timeout: float | None = None
    verbose: bool = False
    log_level: str | None = None


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to runtime config YAML file with target definitions",
    )
    parser.add_argument(
        "--target",
        type=str,
        required=True,
        help="Name of the target in the config file",
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Timeout in seconds (request timeout, or WebSocket close-timeout)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log at debug level with logger names",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS),
        default=None,
        help="Log level (default: from config file, else info)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with request and ws subcommands."""
    parser = argparse.ArgumentParser(
        prog="fluent-client",
        description="Send HTTP, SOAP and WebSocket requests to configured targets.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Execution mode")

    # Request subcommand
    request_parser = subparsers.add_parser(
        "request",
        help="Send one HTTP or SOAP request and print the response as JSON",
    )
    _add_common_arguments(request_parser)
    request_parser.add_argument("method", type=str, help="HTTP method (get, post, put, ...)")
    request_parser.add_argument(
        "path",
        type=str,
        nargs="?",
        default="",
        help="Path below the base URL, e.g. api/v2/breeds/42",
    )
    request_parser.add_argument(
        "--query",
        type=parse_key_value,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Query parameter (can be repeated)",
    )
    request_parser.add_argument(
        "--header",
        type=parse_header,
        action="append",
        default=[],
        metavar="'NAME: VALUE'",
        dest="headers",
        help="Extra request header (can be repeated)",
    )
    request_parser.add_argument(
        "--json",
        type=parse_json_value,
        default=None,
        dest="json_body",
        metavar="JSON",
        help="JSON request body",
    )
    request_parser.add_argument(
        "--soap-path",
        type=str,
        default=None,
        help="SOAP endpoint appended to the URL (requires --soap-body-file)",
    )
    request_parser.add_argument(
        "--soap-body-file",
        type=Path,
        default=None,
        help="File holding the SOAP envelope, sent verbatim",
    )
    request_parser.add_argument(
        "--soap-action",
        type=str,
        default=None,
        help="SOAPAction header value",
    )
    request_parser.add_argument(
        "--soap-content-type",
        type=str,
        default=None,
        help="Content-Type for this SOAP request (default: from target config)",
    )
    request_parser.add_argument(
        "--follow-redirects",
        action="store_true",
        help="Follow 3xx redirects instead of reporting them",
    )

    # WebSocket subcommand
    ws_parser = subparsers.add_parser(
        "ws",
        help="Open a WebSocket session and print received messages",
    )
    _add_common_arguments(ws_parser)
    ws_parser.add_argument(
        "--send",
        type=str,
        action="append",
        default=[],
        metavar="MESSAGE",
        help="Message sent after the connection opens; JSON or plain text (can be repeated)",
    )
    ws_parser.add_argument(
        "--signalr",
        action="store_true",
        help="Perform the SignalR hub handshake and use record-separated frames",
    )

    return parser


def parse_request_args(namespace: argparse.Namespace) -> RequestArgs:
    """Convert parsed namespace to RequestArgs dataclass."""
    return RequestArgs(
        config=namespace.config,
        target=namespace.target,
        method=namespace.method.lower(),
        path=namespace.path,
        query=namespace.query or [],
        headers=namespace.headers or [],
        json_body=namespace.json_body,
        soap_path=namespace.soap_path,
        soap_body_file=namespace.soap_body_file,
        soap_action=namespace.soap_action,
        soap_content_type=namespace.soap_content_type,
        timeout=namespace.timeout,
        follow_redirects=namespace.follow_redirects,
        verbose=namespace.verbose,
        log_level=namespace.log_level,
    )


def parse_ws_args(namespace: argparse.Namespace) -> WsArgs:
    """Convert parsed namespace to WsArgs dataclass."""
    return WsArgs(
        config=namespace.config,
        target=namespace.target,
        send=namespace.send or [],
        signalr=namespace.signalr,
        timeout=namespace.timeout,
        verbose=namespace.verbose,
        log_level=namespace.log_level,
    )


def parse_args(args: list[str] | None = None) -> RequestArgs | WsArgs:
    """Parse command-line arguments and return typed args dataclass.

    Args:
        args: Command-line arguments to parse. If None, uses sys.argv[1:].

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "request":
        if (namespace.soap_path is None) != (namespace.soap_body_file is None):
            parser.error("--soap-path and --soap-body-file must be given together")
        if namespace.soap_path is not None and namespace.json_body is not None:
            parser.error("--json cannot be combined with a SOAP request")
        if namespace.query and namespace.json_body is not None and not isinstance(namespace.json_body, dict):
            parser.error("--query needs a JSON object body (or no --json)")
        return parse_request_args(namespace)
    return parse_ws_args(namespace)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parsed = parse_args(argv)

        if isinstance(parsed, RequestArgs):
            return run_request(parsed)
        return run_ws(parsed)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def _load_target(config_path: Path, target: str) -> tuple[RuntimeConfig, ClientOptions]:
    config = load_runtime_config(config_path)
    return config, get_target(config, target)


def _setup_logging(config: RuntimeConfig, verbose: bool, log_level: str | None) -> None:
    configure_logging(verbose=verbose or config.verbose, level=log_level or config.log_level)


def build_request_body(args: RequestArgs) -> Any:
    """Assemble the request body the executor expects from CLI flags.

    Raises:
        OSError: If the SOAP body file cannot be read.
    """
    if args.soap_path is not None and args.soap_body_file is not None:
        soap: dict[str, Any] = {
            "soapPath": args.soap_path,
            "soapBody": args.soap_body_file.read_text(encoding="utf-8"),
        }
        if args.soap_action:
            soap["soapAction"] = args.soap_action
        return {"queryParams": soap}

    if not args.query:
        return args.json_body

    query: dict[str, Any] = {}
    for key, value in args.query:
        if key in query:
            existing = query[key]
            query[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            query[key] = value
    body = dict(args.json_body or {})
    body["queryParams"] = query
    return body


def build_request_params(args: RequestArgs) -> dict[str, Any]:
    params: dict[str, Any] = {"follow_redirects": args.follow_redirects}
    if args.headers:
        params["headers"] = dict(args.headers)
    if args.soap_content_type:
        params["soap_content_type"] = args.soap_content_type
    return params


def format_response(response: ResponseCase) -> dict[str, Any]:
    """Response summary for printing; request headers are left out since they carry credentials."""
    return response.model_dump(mode="json", exclude={"request_headers"}, exclude_none=True)


def run_request(args: RequestArgs) -> int:
    """Run request mode."""
    try:
        config, options = _load_target(args.config, args.target)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    try:
        _setup_logging(config, args.verbose, args.log_level)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.timeout is not None:
        options = options.model_copy(update={"timeout": args.timeout})

    try:
        body = build_request_body(args)
    except OSError as e:
        print(f"Error reading SOAP body: {e}", file=sys.stderr)
        return 1

    try:
        client = HttpClient(options, credential_defaults=load_credential_defaults())
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    params = build_request_params(args)
    segments = [segment for segment in args.path.split("/") if segment]
    with client:
        if segments:
            route = client.dynamic
            for segment in segments:
                route = route.path(segment)
            response = route.verb(args.method)(body, params)
        else:
            response = client.request(args.method, body=body, params=params)

    print(json.dumps(format_response(response), indent=2))
    return 1 if response.error_record is not None else 0


def run_ws(args: WsArgs) -> int:
    """Run ws mode.

    Plain sessions close after one reply per --send message; otherwise the
    session runs until the peer closes it or the close-timeout fires.
    """
    try:
        config, options = _load_target(args.config, args.target)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    try:
        _setup_logging(config, args.verbose, args.log_level)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.timeout is not None:
        options = options.model_copy(update={"timeout_duration": args.timeout})

    try:
        session = WebSocketSession(options, credential_defaults=load_credential_defaults())
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    received: list[MessageEvent] = []
    errors: list[ErrorEvent] = []
    closed: list[CloseEvent] = []

    def on_open(event: Any) -> None:
        for message in args.send:
            if args.signalr:
                session.send_raw(f"{message}{RECORD_SEPARATOR}")
            else:
                session.send(_message_value(message))

    def on_message(event: MessageEvent) -> None:
        received.append(event)
        data = event.data if isinstance(event.data, str) else event.data.decode("utf-8", errors="replace")
        print(data.rstrip(RECORD_SEPARATOR))
        if not args.signalr and args.send and len(received) >= len(args.send):
            session.close()

    if args.signalr:
        session.setup_signalr_event_listeners()
    else:
        session.start_timeout()
    session.tear_down()
    session.add_event_listener("open", on_open)
    session.add_event_listener("message", on_message)
    session.add_event_listener("error", errors.append)
    session.add_event_listener("close", closed.append)
    session.run()

    if closed:
        print(f"Closed: {closed[-1].code} {closed[-1].reason}", file=sys.stderr)
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
