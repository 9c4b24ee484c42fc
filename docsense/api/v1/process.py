"""Document processing endpoint — upload, extract, summarize, forward."""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from docsense.core.config import settings
from docsense.core.rate_limit import limiter
from docsense.gateway.gateway import AIGateway
from docsense.schemas.extraction import ProcessErrorResponse, ProcessResponse
from docsense.services.automation_forwarder import build_forward_payload, forward_to_automation
from docsense.services.document_text import DocumentTextError, extract_document_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=["process"])


def get_gateway(request: Request) -> AIGateway:
    """The application's single gateway (one queue per process)."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        gateway = request.app.state.gateway = AIGateway.from_settings(settings)
    return gateway


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={code: {"model": ProcessErrorResponse} for code in (502, 503, 504)},
)
@limiter.limit(settings.process_rate_limit)
async def process_document(
    request: Request,
    file: UploadFile | None = File(None),
    question: str = Form(""),
    recipient_email: str | None = Form(None),
    gateway: AIGateway = Depends(get_gateway),
):
    """Extract text from the uploaded file and answer ``question`` as structured JSON.

    Gateway failures propagate as InvocationError and are rendered by the
    application-level exception handler.
    """
    if file is None:
        raise HTTPException(status_code=400, detail="File required")

    data = await file.read()
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail=f"File exceeds {settings.max_upload_bytes} bytes")

    filename = file.filename or "unknown"
    try:
        text = await extract_document_text(data, filename, file.content_type)
    except DocumentTextError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    result = await gateway.request_structured_extraction(text, question)

    forwarded = await forward_to_automation(
        build_forward_payload(
            filename=filename,
            file_size=len(data),
            ai_output=result.to_dict(),
            text=text,
            question=question,
            recipient_email=recipient_email,
        ),
        settings.n8n_webhook_url,
        timeout=settings.n8n_timeout_seconds,
    )

    return ProcessResponse(
        request_id=result.request_id,
        text=text,
        structured_json=result.structured_payload,
        attempts=[a.to_dict() for a in result.attempts],
        forwarded=forwarded,
    )
