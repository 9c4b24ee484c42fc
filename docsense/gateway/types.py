"""Core types and DTOs for the AI invocation gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RequestStatus(str, Enum):
    """Status of an extraction request through its lifecycle."""

    QUEUED = "queued"
    ADMITTED = "admitted"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"  # terminal
    FAILED = "failed"  # terminal


class AttemptOutcome(str, Enum):
    """What happened to a single upstream attempt."""

    SUCCEEDED = "succeeded"
    RETRYING = "retrying"  # retryable failure, another attempt follows
    FAILED = "failed"  # fatal or final failure


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvocationRequest:
    """One structured-extraction request. Immutable once queued."""

    document_text: str
    question: str
    request_id: str = field(default_factory=new_request_id)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff bounds for the retrying invoker."""

    max_attempts: int = 6
    base_delay_ms: int = 500
    max_delay_ms: int = 30_000

    @classmethod
    def from_settings(cls, settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
        )


@dataclass(frozen=True)
class QueueConfig:
    """Admission limits for the request queue."""

    concurrency: int = 1  # Max tasks executing at once
    interval_cap: int = 1  # Max task starts per interval
    interval_ms: int = 1000
    hold_slot_during_backoff: bool = True  # Retry waits keep the concurrency slot

    @classmethod
    def from_settings(cls, settings) -> QueueConfig:
        return cls(
            concurrency=settings.queue_concurrency,
            interval_cap=settings.queue_interval_cap,
            interval_ms=settings.queue_interval_ms,
            hold_slot_during_backoff=settings.queue_hold_slot_during_backoff,
        )


@dataclass(frozen=True)
class GatewayConfig:
    """Upstream endpoint and prompt settings used by AIGateway."""

    base_url: str
    api_key: str
    model: str
    temperature: float = 0.0
    truncate_chars: int = 4000
    max_output_tokens: int = 800
    timeout_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings) -> GatewayConfig:
        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            truncate_chars=settings.llm_truncate_chars,
            max_output_tokens=settings.llm_max_output_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    def public_dict(self) -> dict:
        """Configuration without the API key, for status endpoints."""
        return {
            "base_url": self.base_url,
            "model": self.model,
            "api_key_configured": bool(self.api_key),
            "truncate_chars": self.truncate_chars,
            "max_output_tokens": self.max_output_tokens,
            "timeout_seconds": self.timeout_seconds,
        }


# ---------------------------------------------------------------------------
# Attempts & results
# ---------------------------------------------------------------------------


@dataclass
class InvocationAttempt:
    """Diagnostics for a single upstream attempt."""

    attempt_number: int
    waited_ms: int = 0  # Backoff slept before this attempt
    http_status: int | None = None
    outcome: AttemptOutcome | None = None

    def to_dict(self) -> dict:
        return {
            "attempt_number": self.attempt_number,
            "waited_ms": self.waited_ms,
            "http_status": self.http_status,
            "outcome": self.outcome.value if self.outcome else None,
        }


@dataclass
class CompletionResult:
    """Successful structured extraction.

    ``structured_payload`` has always passed schema validation; there is no
    partially-filled variant of this type.
    """

    structured_payload: dict[str, Any]
    raw_text: str
    raw_response: Any
    success: bool = True
    request_id: str = ""
    attempts: list[InvocationAttempt] = field(default_factory=list)
    latency_ms: int = 0
    model_version: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def retry_count(self) -> int:
        return max(0, len(self.attempts) - 1)

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict for API responses and forwarding."""
        return {
            "success": self.success,
            "request_id": self.request_id,
            "structured_payload": self.structured_payload,
            "raw_text": self.raw_text,
            "attempts": [a.to_dict() for a in self.attempts],
            "latency_ms": self.latency_ms,
            "model_version": self.model_version,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }
