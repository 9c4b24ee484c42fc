"""Exception hierarchy for the AI invocation gateway.

``UpstreamHTTPError`` is what the transport raises for a single non-2xx call.
Everything the gateway surfaces to callers is an ``InvocationError`` subclass
tagged with a ``kind`` and enriched with attempt count and upstream context.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONFIG = "config"
    TRANSPORT = "transport"
    RATE_LIMIT = "rate_limit"
    UPSTREAM_SERVER = "upstream_server"
    UPSTREAM_CLIENT = "upstream_client"
    EMPTY_OUTPUT = "empty_output"
    UNPARSABLE_OUTPUT = "unparsable_output"


class UpstreamHTTPError(Exception):
    """Raised by the transport when the endpoint answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int, headers: dict[str, str] | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.headers = headers or {}
        self.body = body


class ParseError(ValueError):
    """No JSON object could be recovered from model output."""

    def __init__(self, text: str, direct_error: str, substring_error: str):
        super().__init__(f"Model output is not valid JSON (direct: {direct_error}; substring: {substring_error})")
        self.text = text
        self.direct_error = direct_error
        self.substring_error = substring_error


class InvocationError(Exception):
    """Base class for every failure surfaced by the gateway."""

    kind: ErrorKind
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        status: int | None = None,
        headers: dict[str, str] | None = None,
        body: Any = None,
        request_id: str = "",
    ):
        super().__init__(message)
        self.attempts = attempts
        self.status = status
        self.headers = headers or {}
        self.body = body
        self.request_id = request_id

    @property
    def rate_limit_headers(self) -> dict[str, str]:
        return {k: v for k, v in self.headers.items() if k.lower().startswith("x-ratelimit") or k.lower() == "retry-after"}

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": str(self),
            "attempts": self.attempts,
            "status": self.status,
            "request_id": self.request_id,
        }


class ConfigError(InvocationError):
    kind = ErrorKind.CONFIG


class TransportError(InvocationError):
    """Network failure or timeout; no HTTP status was received."""

    kind = ErrorKind.TRANSPORT
    retryable = True


class RateLimitError(InvocationError):
    kind = ErrorKind.RATE_LIMIT
    retryable = True


class UpstreamServerError(InvocationError):
    kind = ErrorKind.UPSTREAM_SERVER
    retryable = True


class UpstreamClientError(InvocationError):
    kind = ErrorKind.UPSTREAM_CLIENT


class EmptyOutputError(InvocationError):
    """The endpoint answered 2xx but no text could be extracted."""

    kind = ErrorKind.EMPTY_OUTPUT

    def __init__(self, message: str, *, finish_reason: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.finish_reason = finish_reason

    @property
    def raw_response(self) -> Any:
        return self.body

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["finish_reason"] = self.finish_reason
        return data


class UnparsableOutputError(InvocationError):
    """Text was returned but it is not a JSON object matching the payload schema."""

    kind = ErrorKind.UNPARSABLE_OUTPUT

    def __init__(
        self,
        message: str,
        *,
        raw_text: str,
        parse_errors: list[str] | None = None,
        finish_reason: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.raw_text = raw_text
        self.parse_errors = parse_errors or []
        self.finish_reason = finish_reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["raw_text"] = self.raw_text
        data["parse_errors"] = self.parse_errors
        data["finish_reason"] = self.finish_reason
        return data


def error_for_status(status: int | None) -> type[InvocationError]:
    """Map an upstream status (None = no response) to its error class."""
    if status is None:
        return TransportError
    if status == 429:
        return RateLimitError
    if 500 <= status <= 599:
        return UpstreamServerError
    return UpstreamClientError
