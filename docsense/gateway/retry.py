"""Retrying Invoker — one logical upstream call with retries and backoff.

Failure classification:
  - no status (network error, timeout)  → retryable
  - 429                                 → retryable, honors Retry-After
  - 5xx                                 → retryable
  - anything else                       → fatal, raised on the spot

Backoff strategy:
  Retry-After present (seconds or HTTP date) → that delay, clamped to [0, max_delay]
  otherwise full jitter                      → random(0, min(max_delay, base * 2^(attempt-1)))

Attempts of one invocation are strictly sequential; the wait suspends only
the awaiting coroutine.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

import httpx

from docsense.core.metrics import UPSTREAM_ATTEMPTS, UPSTREAM_RETRIES
from docsense.gateway.errors import InvocationError, UpstreamHTTPError, error_for_status
from docsense.gateway.types import AttemptOutcome, InvocationAttempt, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retry-After delay-seconds: digits only (RFC 9110 section 10.2.3)
_DELAY_SECONDS_RE = re.compile(r"^\d+$", re.ASCII)

# What a single transport call may raise. Anything else is a bug and is not retried.
TRANSPORT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    UpstreamHTTPError,
    httpx.HTTPError,
    OSError,
    asyncio.TimeoutError,
)


def header_value(headers: Mapping[str, str] | None, name: str) -> str | None:
    """Case-insensitive header lookup over a plain mapping."""
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def describe_failure(exc: BaseException) -> tuple[int | None, dict[str, str], Any]:
    """Pull (status, headers, body) out of a transport-level exception."""
    if isinstance(exc, UpstreamHTTPError):
        return exc.status_code, dict(exc.headers), exc.body
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return response.status_code, dict(response.headers), response.text
    return None, {}, None


def is_retryable(status: int | None) -> bool:
    if status is None:
        return True
    return status == 429 or 500 <= status <= 599


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into milliseconds.

    Accepts a whole number of seconds or an HTTP date. Returns None when the value
    is missing or unparsable. The result may be negative for dates in the
    past; callers clamp.
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None

    if _DELAY_SECONDS_RE.match(value):
        return int(value) * 1000.0

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return (when - current).total_seconds() * 1000


class RetryingInvoker:
    """Executes a single-call coroutine factory until it succeeds or gives up.

    Usage:
        invoker = RetryingInvoker(RetryPolicy(max_attempts=4))
        history: list[InvocationAttempt] = []
        body = await invoker.invoke(lambda: transport.send(messages), request_id="abc", history=history)

    ``sleep``, ``rng`` and ``clock`` can be swapped out in tests.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.policy = policy or RetryPolicy()
        if self.policy.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def compute_wait_ms(self, attempt: int, headers: Mapping[str, str] | None = None) -> int:
        """Delay before the attempt following ``attempt`` (1-based)."""
        retry_after = parse_retry_after(header_value(headers, "retry-after"), now=self._clock())
        if retry_after is not None:
            return int(round(min(max(retry_after, 0.0), self.policy.max_delay_ms)))

        cap = min(self.policy.max_delay_ms, self.policy.base_delay_ms * 2 ** (attempt - 1))
        return int(self._rng.uniform(0, cap))

    async def invoke(
        self,
        call: Callable[[], Awaitable[T]],
        *,
        request_id: str = "",
        history: list[InvocationAttempt] | None = None,
    ) -> T:
        """Run ``call`` with retries. Raises an enriched InvocationError on failure."""
        if history is None:
            history = []
        max_attempts = self.policy.max_attempts
        waited_ms = 0

        for attempt in range(1, max_attempts + 1):
            record = InvocationAttempt(attempt_number=attempt, waited_ms=waited_ms)
            history.append(record)

            logger.info(
                "Attempt %d/%d for request %s",
                attempt,
                max_attempts,
                request_id,
                extra={"event": "attempt_start", "request_id": request_id, "attempt": attempt},
            )

            try:
                result = await call()
            except TRANSPORT_EXCEPTIONS as exc:
                status, headers, body = describe_failure(exc)
                record.http_status = status

                if not is_retryable(status) or attempt == max_attempts:
                    record.outcome = AttemptOutcome.FAILED
                    UPSTREAM_ATTEMPTS.labels(outcome=AttemptOutcome.FAILED.value).inc()
                    raise self._terminal_error(exc, attempt, status, headers, body, request_id) from exc

                record.outcome = AttemptOutcome.RETRYING
                UPSTREAM_ATTEMPTS.labels(outcome=AttemptOutcome.RETRYING.value).inc()
                UPSTREAM_RETRIES.labels(kind=error_for_status(status).kind.value).inc()

                waited_ms = self.compute_wait_ms(attempt, headers)
                self._log_retry(exc, attempt, status, headers, waited_ms, request_id)
                await self._sleep(waited_ms / 1000)
            else:
                record.outcome = AttemptOutcome.SUCCEEDED
                record.http_status = getattr(result, "status_code", None)
                UPSTREAM_ATTEMPTS.labels(outcome=AttemptOutcome.SUCCEEDED.value).inc()
                return result

        raise RuntimeError("retry loop exited without a result")  # pragma: no cover

    def _terminal_error(
        self,
        exc: BaseException,
        attempt: int,
        status: int | None,
        headers: dict[str, str],
        body: Any,
        request_id: str,
    ) -> InvocationError:
        error_cls = error_for_status(status)
        error = error_cls(
            f"Upstream request failed (attempt {attempt}): {exc}",
            attempts=attempt,
            status=status,
            headers=headers,
            body=body,
            request_id=request_id,
        )
        logger.error(
            "Request %s failed after %d attempt(s): kind=%s status=%s",
            request_id,
            attempt,
            error.kind.value,
            status,
            extra={
                "event": "invocation_failed",
                "request_id": request_id,
                "attempt": attempt,
                "status": status,
                "kind": error.kind.value,
                "upstream_body": _truncate(body),
                "rate_limit_headers": error.rate_limit_headers,
            },
        )
        return error

    def _log_retry(
        self,
        exc: BaseException,
        attempt: int,
        status: int | None,
        headers: dict[str, str],
        wait_ms: int,
        request_id: str,
    ) -> None:
        rate_limit = {k: v for k, v in headers.items() if k.lower().startswith("x-ratelimit")}
        logger.warning(
            "Retrying request %s: attempt=%d/%d status=%s wait_ms=%d error=%s",
            request_id,
            attempt,
            self.policy.max_attempts,
            status,
            wait_ms,
            exc,
            extra={
                "event": "retry_wait",
                "request_id": request_id,
                "attempt": attempt,
                "status": status,
                "wait_ms": wait_ms,
                "rate_limit_headers": rate_limit,
            },
        )


def _truncate(body: Any, limit: int = 2000) -> Any:
    if isinstance(body, str) and len(body) > limit:
        return body[:limit] + "…"
    return body
