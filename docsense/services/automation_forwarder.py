"""Automation forwarder — posts processing results to an n8n webhook."""

import logging

import httpx

logger = logging.getLogger(__name__)


def build_forward_payload(
    *,
    filename: str,
    file_size: int,
    ai_output: dict,
    text: str,
    question: str | None,
    recipient_email: str | None,
    snippet_chars: int = 2000,
) -> dict:
    """Event body sent downstream. Only a snippet of the document travels."""
    return {
        "filename": filename,
        "fileSize": file_size,
        "aiOutput": ai_output,
        "textSnippet": text[:snippet_chars],
        "userQuestion": question or None,
        "recipientEmail": recipient_email or None,
    }


async def forward_to_automation(payload: dict, webhook_url: str, timeout: float = 15.0) -> bool:
    """Deliver ``payload`` to the webhook. Returns True on a 2xx answer.

    Delivery problems are logged and reported through the return value; they
    never fail the user's request.
    """
    if not webhook_url:
        logger.info("Automation webhook not configured, skipping event")
        return False

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(webhook_url, json=payload)
    except httpx.HTTPError as e:
        logger.warning("Failed to send event to automation webhook: %s", e)
        return False

    if not resp.is_success:
        logger.warning("Automation webhook answered %d: %.500s", resp.status_code, resp.text)
        return False

    logger.info("Event sent to automation webhook")
    return True
