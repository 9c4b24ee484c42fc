import json
from collections.abc import AsyncGenerator
from contextlib import contextmanager
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from docsense.core.config import settings

# Override settings for tests
settings.llm_api_key = "test-key"
settings.n8n_webhook_url = ""
settings.app_env = "development"

from docsense.core.rate_limit import limiter  # noqa: E402
from docsense.gateway.gateway import AIGateway  # noqa: E402
from docsense.gateway.retry import RetryingInvoker  # noqa: E402
from docsense.gateway.types import GatewayConfig, QueueConfig, RetryPolicy  # noqa: E402
from docsense.main import app  # noqa: E402

INVOICE_JSON = {
    "summary": "Invoice total is $450",
    "key_pairs": [{"key": "total", "value": "$450", "reason": "stated in text"}],
    "confidence": 0.9,
}


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays (seconds)."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_httpx_response(
    status_code: int,
    json_data: dict | None = None,
    text: str = "",
    headers: dict | None = None,
) -> httpx.Response:
    """Create a proper httpx.Response with request set."""
    request = httpx.Request("POST", "https://llm.test/v1/chat/completions")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, headers=headers, request=request)
    return httpx.Response(status_code, text=text, headers=headers, request=request)


def chat_body(content) -> dict:
    return {
        "id": "chatcmpl-1",
        "model": "test-model-001",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 40},
    }


def fenced(payload: dict) -> str:
    return "```json\n" + json.dumps(payload) + "\n```"


@contextmanager
def mock_http_client(*responses, target: str = "docsense.gateway.transport.httpx.AsyncClient"):
    """Patch httpx.AsyncClient so successive .post calls yield ``responses``.

    Exceptions in ``responses`` are raised instead of returned.
    """
    with patch(target) as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.post.side_effect = list(responses)
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        mock_client_cls.return_value = mock_client
        yield mock_client


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        base_url="https://llm.test/v1",
        api_key="test-key",
        model="test-model",
        truncate_chars=4000,
        max_output_tokens=800,
        timeout_seconds=5.0,
    )


@pytest.fixture
def make_gateway(gateway_config, sleep):
    """Factory for an isolated gateway (own queue, recorded sleeps)."""

    def _make(
        config: GatewayConfig | None = None,
        policy: RetryPolicy | None = None,
        queue_config: QueueConfig | None = None,
        transport=None,
    ) -> AIGateway:
        policy = policy or RetryPolicy(max_attempts=3, base_delay_ms=10, max_delay_ms=100)
        return AIGateway(
            config or gateway_config,
            queue_config=queue_config or QueueConfig(concurrency=1, interval_cap=100, interval_ms=1000),
            transport=transport,
            invoker=RetryingInvoker(policy, sleep=sleep),
        )

    return _make


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    limiter.reset()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.gateway = None
