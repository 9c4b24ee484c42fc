"""
run_extraction.py — one-off structured extraction for a local file.

Reads the file, extracts its text (PDF or plain text), asks the configured
completion endpoint the question and prints the CompletionResult as JSON.
Uses the same settings (.env / environment) as the API server.

Usage:
    python run_extraction.py invoice.pdf "What is the total?"
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

from docsense.core.config import settings
from docsense.gateway.errors import InvocationError, UnparsableOutputError
from docsense.gateway.gateway import AIGateway
from docsense.services.document_text import DocumentTextError, extract_document_text

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("run_extraction")


async def main(argv: list[str]) -> int:
    if len(argv) < 2:
        print(__doc__)
        return 2

    path = Path(argv[0])
    question = " ".join(argv[1:])

    try:
        text = await extract_document_text(path.read_bytes(), path.name)
    except (OSError, DocumentTextError) as e:
        logger.error("Cannot read %s: %s", path, e)
        return 1

    gateway = AIGateway.from_settings(settings)
    try:
        result = await gateway.request_structured_extraction(text, question)
    except InvocationError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2))
        if isinstance(e, UnparsableOutputError):
            print("\n--- raw model output ---\n" + e.raw_text)
        return 1

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
