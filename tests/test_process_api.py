"""Tests for the HTTP surface: /api/v1/process, /api/v1/health and /metrics."""

import json

import pytest
from httpx import AsyncClient

from docsense.core.config import settings
from tests.conftest import INVOICE_JSON, chat_body, fenced, make_httpx_response, mock_http_client


def upload(content: bytes = b"Invoice total: $450", name: str = "invoice.txt", content_type: str = "text/plain"):
    return {"file": (name, content, content_type)}


# ==========================================================================
# Test: POST /api/v1/process
# ==========================================================================


@pytest.mark.asyncio
async def test_process_success(client: AsyncClient):
    with mock_http_client(make_httpx_response(200, chat_body(fenced(INVOICE_JSON)))) as http:
        resp = await client.post(
            "/api/v1/process",
            files=upload(),
            data={"question": "What is the total?"},
        )

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["text"] == "Invoice total: $450"
    assert data["structured_json"]["summary"] == "Invoice total is $450"
    assert data["structured_json"]["confidence"] == 0.9
    assert data["forwarded"] is False
    assert len(data["attempts"]) == 1
    assert data["attempts"][0]["http_status"] == 200
    assert len(data["request_id"]) == 16

    messages = http.post.call_args.kwargs["json"]["messages"]
    assert "Invoice total: $450" in messages[1]["content"]
    assert 'User question: "What is the total?"' in messages[1]["content"]


@pytest.mark.asyncio
async def test_process_upstream_client_error(client: AsyncClient):
    with mock_http_client(make_httpx_response(401, {"error": {"message": "invalid api key"}})) as http:
        resp = await client.post("/api/v1/process", files=upload(), data={"question": "q"})

    assert http.post.await_count == 1
    assert resp.status_code == 502
    data = resp.json()
    assert data["kind"] == "upstream_client"
    assert data["status"] == 401
    assert data["attempts"] == 1
    assert data["request_id"]


@pytest.mark.asyncio
async def test_process_unparsable_output(client: AsyncClient):
    with mock_http_client(make_httpx_response(200, chat_body("Sorry, I cannot comply"))):
        resp = await client.post("/api/v1/process", files=upload(), data={"question": "q"})

    assert resp.status_code == 502
    data = resp.json()
    assert data["kind"] == "unparsable_output"
    assert data["raw_text"] == "Sorry, I cannot comply"
    assert data["finish_reason"] == "stop"


@pytest.mark.asyncio
async def test_process_missing_file(client: AsyncClient):
    resp = await client.post("/api/v1/process", data={"question": "q"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "File required"


@pytest.mark.asyncio
async def test_process_file_too_large(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 5)
    with mock_http_client() as http:
        resp = await client.post("/api/v1/process", files=upload(b"0123456789"), data={"question": "q"})
    assert resp.status_code == 413
    http.post.assert_not_called()


@pytest.mark.asyncio
async def test_process_unreadable_pdf(client: AsyncClient):
    with mock_http_client() as http:
        resp = await client.post(
            "/api/v1/process",
            files=upload(b"definitely not a pdf", "scan.pdf", "application/pdf"),
            data={"question": "q"},
        )
    assert resp.status_code == 422
    http.post.assert_not_called()


@pytest.mark.asyncio
async def test_process_missing_api_key(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "llm_api_key", "")
    with mock_http_client() as http:
        resp = await client.post("/api/v1/process", files=upload(), data={"question": "q"})
    assert resp.status_code == 503
    assert resp.json()["kind"] == "config"
    http.post.assert_not_called()


# ==========================================================================
# Test: health & metrics
# ==========================================================================


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["gateway"]["queue"]["concurrency"] == settings.queue_concurrency
    assert data["gateway"]["upstream"]["api_key_configured"] is True
    assert settings.llm_api_key not in json.dumps(data)


@pytest.mark.asyncio
async def test_metrics(client: AsyncClient):
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "llm_upstream_attempts_total" in resp.text
    assert "http_requests_total" in resp.text
