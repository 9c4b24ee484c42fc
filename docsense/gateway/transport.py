"""Chat Completions transport — exactly one HTTP call per ``send``.

Speaks the OpenAI-compatible ``POST {base_url}/chat/completions`` protocol
(OpenAI, Gemini's OpenAI endpoint, DeepSeek, ...). It never retries: non-2xx
answers become ``UpstreamHTTPError`` and network failures/timeouts propagate
as ``httpx`` exceptions, both of which the RetryingInvoker classifies.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from docsense.gateway.errors import UpstreamHTTPError

logger = logging.getLogger(__name__)


@dataclass
class UpstreamResponse:
    """A 2xx answer from the completion endpoint."""

    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
    latency_ms: int = 0


def _decode_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class ChatCompletionsTransport:
    """OpenAI-compatible chat completions client."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 800,
        timeout: float = 60.0,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def build_payload(self, messages: list[dict[str, str]]) -> dict:
        return {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def send(self, messages: list[dict[str, str]]) -> UpstreamResponse:
        start = time.monotonic()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.url,
                json=self.build_payload(messages),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        body = _decode_body(resp)

        if not resp.is_success:
            raise UpstreamHTTPError(
                f"HTTP {resp.status_code} from {self.url}",
                status_code=resp.status_code,
                headers=dict(resp.headers),
                body=body,
            )

        logger.debug("Upstream answered %d in %dms", resp.status_code, elapsed_ms)
        return UpstreamResponse(
            status_code=resp.status_code,
            body=body,
            headers=dict(resp.headers),
            latency_ms=elapsed_ms,
        )
