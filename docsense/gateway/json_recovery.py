"""Structured JSON recovery from model output.

Models asked for "JSON only" still wrap it in Markdown fences or add a
sentence before/after. Recovery is deliberately narrow: strip a fence, try a
direct parse, then try the span from the first ``{`` to the last ``}``.
Nothing is repaired or invented; if both parses fail a ParseError carries
both messages.
"""

from __future__ import annotations

import json
import re
from typing import Any

from docsense.gateway.errors import ParseError

# ```json\n{...}\n```  (language tag optional)
_FENCE_RE = re.compile(r"^```[\w+.-]*[ \t]*\r?\n?(?P<body>.*?)\r?\n?[ \t]*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding fenced-code wrapper, if the whole text is one."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group("body").strip()
    return stripped


def _parse_object(candidate: str) -> dict[str, Any]:
    parsed = json.loads(candidate)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


def recover(text: str) -> dict[str, Any]:
    """Recover a JSON object from ``text`` or raise ParseError."""
    if text is None:
        raise ParseError("", "no text", "no text")

    candidate = strip_code_fence(str(text))

    try:
        return _parse_object(candidate)
    except ValueError as e:
        direct_error = str(e)

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise ParseError(str(text), direct_error, "no {...} span found")

    try:
        return _parse_object(candidate[start : end + 1])
    except ValueError as e:
        raise ParseError(str(text), direct_error, str(e)) from e
