"""AI Gateway — the one entry point for structured extraction.

Pipeline for a single request:
  1. Build the two-message prompt (document truncated, delimiters escaped)
  2. Admit through the RequestQueue
  3. Call the transport via the RetryingInvoker
  4. Normalize the response body to text
  5. Recover JSON and validate it against StructuredPayload

Lifecycle: queued → admitted → attempting(n) → succeeded | attempting(n+1) | failed(kind)

Usage:
    gateway = AIGateway.from_settings(settings)
    result = await gateway.request_structured_extraction(document_text, question)
    result.structured_payload["summary"]
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import ValidationError

from docsense.core.metrics import EXTRACTION_COMPLETIONS, EXTRACTION_DURATION, EXTRACTION_FAILURES
from docsense.gateway.errors import (
    ConfigError,
    EmptyOutputError,
    InvocationError,
    ParseError,
    UnparsableOutputError,
)
from docsense.gateway.json_recovery import recover
from docsense.gateway.normalizer import extract_finish_reason, extract_text, extract_usage
from docsense.gateway.prompt_builder import build_messages
from docsense.gateway.queue_manager import RequestQueue
from docsense.gateway.retry import RetryingInvoker
from docsense.gateway.transport import ChatCompletionsTransport, UpstreamResponse
from docsense.gateway.types import (
    CompletionResult,
    GatewayConfig,
    InvocationAttempt,
    InvocationRequest,
    QueueConfig,
    RequestStatus,
    RetryPolicy,
    new_request_id,
)
from docsense.schemas.extraction import StructuredPayload

logger = logging.getLogger(__name__)


class AIGateway:
    """Facade over queue, invoker, transport, normalizer and recoverer.

    Each gateway owns its own RequestQueue; build one per process (or per
    test) rather than sharing counters globally.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        retry_policy: RetryPolicy | None = None,
        queue_config: QueueConfig | None = None,
        transport: ChatCompletionsTransport | None = None,
        queue: RequestQueue | None = None,
        invoker: RetryingInvoker | None = None,
    ):
        self.config = config
        self.queue = queue or RequestQueue(queue_config or QueueConfig())
        self.invoker = invoker or RetryingInvoker(retry_policy or RetryPolicy())
        self.transport = transport or ChatCompletionsTransport(
            base_url=config.base_url,
            api_key=config.api_key,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_output_tokens,
            timeout=config.timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings) -> AIGateway:
        return cls(
            GatewayConfig.from_settings(settings),
            retry_policy=RetryPolicy.from_settings(settings),
            queue_config=QueueConfig.from_settings(settings),
        )

    async def request_structured_extraction(
        self,
        document_text: str,
        question: str,
        request_id: str | None = None,
    ) -> CompletionResult:
        """Run one extraction end to end.

        Raises:
            ConfigError: no API key; nothing is queued.
            TransportError / RateLimitError / UpstreamServerError: retries exhausted.
            UpstreamClientError: non-retryable upstream status, first attempt.
            EmptyOutputError: 2xx response with no extractable text.
            UnparsableOutputError: text that is not schema-conforming JSON.
        """
        request = InvocationRequest(
            document_text=document_text,
            question=question,
            request_id=request_id or new_request_id(),
        )
        start = time.monotonic()
        try:
            result = await self._execute(request, start)
        except InvocationError as e:
            EXTRACTION_FAILURES.labels(kind=e.kind.value).inc()
            self._log_state(request, RequestStatus.FAILED, kind=e.kind.value, attempts=e.attempts)
            raise

        EXTRACTION_COMPLETIONS.inc()
        EXTRACTION_DURATION.observe(time.monotonic() - start)
        self._log_state(request, RequestStatus.SUCCEEDED, attempts=result.attempt_count)
        logger.info(
            "Request %s completed: attempts=%d latency=%dms tokens=%d/%d",
            request.request_id,
            result.attempt_count,
            result.latency_ms,
            result.input_tokens,
            result.output_tokens,
            extra={
                "event": "completed",
                "request_id": request.request_id,
                "attempts": result.attempt_count,
                "latency_ms": result.latency_ms,
            },
        )
        return result

    async def _execute(self, request: InvocationRequest, start: float) -> CompletionResult:
        rid = request.request_id
        if not self.config.api_key:
            raise ConfigError("LLM API key not configured on server", request_id=rid)

        messages = build_messages(request.document_text, request.question, self.config.truncate_chars)
        history: list[InvocationAttempt] = []

        async def send() -> UpstreamResponse:
            self._log_state(request, RequestStatus.ATTEMPTING, attempt=len(history))
            return await self.transport.send(messages)

        async def invoke_in_slot() -> UpstreamResponse:
            self._log_state(request, RequestStatus.ADMITTED)
            return await self.invoker.invoke(send, request_id=rid, history=history)

        self._log_state(request, RequestStatus.QUEUED)
        if self.queue.config.hold_slot_during_backoff:
            # The whole retry loop, waits included, occupies one slot
            response = await self.queue.submit(invoke_in_slot, request_id=rid)
        else:
            # Each attempt is queued on its own; the slot is free during waits
            response = await self.invoker.invoke(
                lambda: self.queue.submit(send, request_id=rid),
                request_id=rid,
                history=history,
            )

        return self._build_result(request, response, history, start)

    def _build_result(
        self,
        request: InvocationRequest,
        response: UpstreamResponse,
        history: list[InvocationAttempt],
        start: float,
    ) -> CompletionResult:
        rid = request.request_id
        body = response.body
        logger.debug("Raw response for %s: %.4000s", rid, body)

        text = extract_text(body)
        if text is None or not text.strip():
            finish_reason = extract_finish_reason(body)
            logger.warning(
                "Request %s: model returned no usable output (finish_reason=%s)",
                rid,
                finish_reason,
                extra={"event": "empty_output", "request_id": rid, "finish_reason": finish_reason},
            )
            raise EmptyOutputError(
                "Model returned no usable output",
                finish_reason=finish_reason,
                attempts=len(history),
                status=response.status_code,
                headers=response.headers,
                body=body,
                request_id=rid,
            )

        payload = self._parse_payload(text, response, history, rid)
        input_tokens, output_tokens = extract_usage(body)

        return CompletionResult(
            structured_payload=payload,
            raw_text=text,
            raw_response=body,
            request_id=rid,
            attempts=history,
            latency_ms=int((time.monotonic() - start) * 1000),
            model_version=_model_version(body) or self.config.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    def _parse_payload(
        self,
        text: str,
        response: UpstreamResponse,
        history: list[InvocationAttempt],
        rid: str,
    ) -> dict[str, Any]:
        context = {
            "attempts": len(history),
            "finish_reason": extract_finish_reason(response.body),
            "status": response.status_code,
            "headers": response.headers,
            "body": response.body,
            "request_id": rid,
        }
        try:
            parsed = recover(text)
        except ParseError as e:
            logger.warning(
                "Request %s: model output not valid JSON (%s)",
                rid,
                e,
                extra={"event": "unparsable_output", "request_id": rid},
            )
            raise UnparsableOutputError(
                "Model output not valid JSON",
                raw_text=text,
                parse_errors=[e.direct_error, e.substring_error],
                **context,
            ) from e

        try:
            payload = StructuredPayload.model_validate(parsed)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            logger.warning(
                "Request %s: model JSON does not match schema: %s",
                rid,
                "; ".join(errors),
                extra={"event": "unparsable_output", "request_id": rid},
            )
            raise UnparsableOutputError(
                "Model output does not match the expected schema",
                raw_text=text,
                parse_errors=errors,
                **context,
            ) from e

        if not 5 <= len(payload.key_pairs) <= 8:
            logger.info("Request %s: %d key_pairs returned (5-8 requested)", rid, len(payload.key_pairs))
        return payload.model_dump()

    def _log_state(self, request: InvocationRequest, state: RequestStatus, **fields: Any) -> None:
        logger.debug(
            "Request %s → %s %s",
            request.request_id,
            state.value,
            fields or "",
            extra={"event": "state", "request_id": request.request_id, "state": state.value, **fields},
        )

    def get_status(self) -> dict:
        """Queue stats and effective configuration (API key redacted)."""
        return {
            "queue": self.queue.get_stats(),
            "retry_policy": {
                "max_attempts": self.invoker.policy.max_attempts,
                "base_delay_ms": self.invoker.policy.base_delay_ms,
                "max_delay_ms": self.invoker.policy.max_delay_ms,
            },
            "hold_slot_during_backoff": self.queue.config.hold_slot_during_backoff,
            "upstream": self.config.public_dict(),
        }

    async def aclose(self) -> None:
        """Wait for queued and in-flight extractions to finish."""
        await self.queue.on_idle()


def _model_version(body: Any) -> str:
    if isinstance(body, dict) and isinstance(body.get("model"), str):
        return body["model"]
    return ""
