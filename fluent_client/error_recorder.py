"""Error recorder - keeps the last failed response of one client.

Each HttpClient owns its own recorder, so concurrent iterations never share
a last-error slot. Recording never raises.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from fluent_client.models import ErrorRecord, ResponseCase

logger = logging.getLogger(__name__)

ErrorSink = Callable[[ErrorRecord], None]


def log_error_record(record: ErrorRecord) -> None:
    """Default sink: log the record as indented JSON at ERROR."""
    logger.error(json.dumps(record.model_dump(), indent=2, default=str))


class ErrorRecorder:
    """Builds ErrorRecords from failed responses.

    Usage:
        recorder = ErrorRecorder()
        recorder.record(not response.is_accepted, response, tags={"step": "login"})
        recorder.last_error  # ErrorRecord or None
    """

    def __init__(self, sink: ErrorSink | None = None) -> None:
        self._sink = sink or log_error_record
        self._last_error: ErrorRecord | None = None

    @property
    def last_error(self) -> ErrorRecord | None:
        """The most recent ErrorRecord, or None if nothing failed yet."""
        return self._last_error

    def clear(self) -> None:
        self._last_error = None

    def record(
        self,
        is_error: bool,
        response: ResponseCase | None,
        tags: Mapping[str, Any] | None = None,
    ) -> ErrorRecord | None:
        """Record a failed response as the last error.

        No-op unless is_error is true and a response exists.

        Args:
            is_error: Outcome of response validation.
            response: The response (or transport-failure stand-in).
            tags: Caller tags merged into the record.

        Returns:
            The new ErrorRecord, or None when nothing was recorded.
        """
        if not is_error or response is None:
            return None

        error_body = response.body
        if error_body is None:
            error_body = response.body_base64 if response.body_base64 is not None else response.error

        record = ErrorRecord(
            request=f"{response.method.upper()} {response.url}",
            request_headers=dict(response.request_headers),
            status=response.status_code,
            error_code=response.error_code,
            error_body=error_body,
            response_headers=dict(response.headers),
            timestamp=datetime.now(timezone.utc).isoformat(),
            tags=dict(tags or {}),
        )
        self._last_error = record

        try:
            self._sink(record)
        except Exception:
            logger.exception("Error sink failed while recording %s", record.request)
        return record
