"""Document text source — turns uploaded bytes into plain UTF-8 text."""

from __future__ import annotations

import asyncio
import io
import logging

from pypdf import PdfReader

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}


class DocumentTextError(Exception):
    """The uploaded file could not be turned into text."""


def is_pdf(filename: str, content_type: str | None) -> bool:
    return (content_type or "").lower() in PDF_CONTENT_TYPES or filename.lower().endswith(".pdf")


def _pdf_to_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = []
    for page in reader.pages:
        pages.append(page.extract_text() or "")
    return "\n".join(pages)


async def extract_document_text(data: bytes, filename: str = "unknown", content_type: str | None = None) -> str:
    """Extract text from an uploaded file.

    PDFs are parsed with pypdf in a worker thread; everything else is decoded
    as UTF-8 with replacement characters.
    """
    if not data:
        raise DocumentTextError("Uploaded file is empty")

    logger.info("Extracting text: name=%s content_type=%s size=%d", filename, content_type, len(data))

    if not is_pdf(filename, content_type):
        return data.decode("utf-8", errors="replace")

    try:
        text = await asyncio.to_thread(_pdf_to_text, data)
    except Exception as e:  # pypdf raises a wide range of errors on malformed input
        raise DocumentTextError(f"Failed to extract text from {filename}: {e}") from e

    if not text.strip():
        logger.warning("PDF %s contained no extractable text (scanned image?)", filename)
    return text
