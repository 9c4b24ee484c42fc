"""Prompt construction for structured extraction.

The user message fences the document with triple double-quotes and wraps the
question in double quotes. Both inputs are untrusted, so anything that could
close those delimiters early is neutralized before embedding.
"""

from __future__ import annotations

import re

DOCUMENT_FENCE = '"""'

SYSTEM_PROMPT = (
    "You are a JSON extractor. Output ONLY valid JSON (no extra commentary).\n"
    'Return an object with keys: "summary" (short), "key_pairs" (array of objects with '
    '"key", "value" and "reason"), "confidence" (0-1).\n'
    "Pick 5-8 most relevant key-value pairs related to the user's question."
)

USER_PROMPT_TEMPLATE = """Document Text:
{fence}{document}{fence}
User question: "{question}"

Produce JSON with:
- summary: 1-2 line analysis relevant to the question
- key_pairs: array of {{key: <string>, value: <string>, reason: <short justification>}}
- confidence: numeric between 0 and 1

Return JSON only."""

_LINE_BREAKS = re.compile(r"[\r\n\u2028\u2029]+")


def truncate_document(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    return text[:max_chars]


def escape_document(text: str) -> str:
    """Break up any run of the fence so the document cannot close it."""
    # Repeat until stable: '""""' would otherwise leave a fresh '"""' behind.
    while DOCUMENT_FENCE in text:
        text = text.replace(DOCUMENT_FENCE, '\\"\\"\\"')
    # Edge quotes would merge with the fence itself
    if text.startswith('"'):
        text = '\\"' + text[1:]
    if text.endswith('"'):
        text = text[:-1] + '\\"'
    return text


def escape_question(question: str) -> str:
    """Make the question safe to place inside a double-quoted string."""
    question = _LINE_BREAKS.sub(" ", question)
    return question.replace("\\", "\\\\").replace('"', '\\"').strip()


def build_messages(document_text: str, question: str, max_chars: int) -> list[dict[str, str]]:
    """System + user messages for one extraction. Deterministic for equal inputs."""
    document = escape_document(truncate_document(str(document_text or ""), max_chars))
    user_prompt = USER_PROMPT_TEMPLATE.format(
        fence=DOCUMENT_FENCE,
        document=document,
        question=escape_question(str(question or "")),
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]
