"""Response Normalizer — pulls plain text out of completion response bodies.

Providers disagree on where the generated text lives, and the shape drifts
between API versions. Each known shape is a matcher in ``RESPONSE_SHAPES``;
``extract_text`` walks them in order and returns the first non-blank text:

  1. chat completion   choices[0].message.content (string or list of parts)
  2. legacy completion choices[0].text
  3. streaming delta   choices[0].delta.content
  4. output array      output[0].content (string or list of parts)
  5. output_text       top-level output_text
  6. fallback          the whole body serialized as text
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

ShapeMatcher = Callable[[Any], "str | None"]


def _first(items: Any) -> Any:
    if isinstance(items, (list, tuple)) and items:
        return items[0]
    return None


def _first_choice(body: Any) -> dict | None:
    if not isinstance(body, dict):
        return None
    choice = _first(body.get("choices"))
    return choice if isinstance(choice, dict) else None


def _serialize(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def _non_blank(text: Any) -> str | None:
    if isinstance(text, str) and text.strip():
        return text
    return None


def _part_text(part: Any) -> str | None:
    """Text of one content part: a string, a {text: ...} object, or the serialized object."""
    if part is None:
        return None
    if isinstance(part, str):
        return _non_blank(part)
    if isinstance(part, dict):
        text = part.get("text")
        if isinstance(text, dict):
            # Some SDKs nest the value: {"type": "text", "text": {"value": "..."}}
            text = text.get("value")
        if _non_blank(text):
            return text
        if _non_blank(part.get("content")):
            return part["content"]
    return _non_blank(_serialize(part))


def _content_text(content: Any) -> str | None:
    """A content field that is either a string or an ordered list of parts."""
    if isinstance(content, str):
        return _non_blank(content)
    if isinstance(content, list):
        texts = [text for text in (_part_text(part) for part in content) if text]
        return _non_blank(" ".join(texts))
    return None


# ---------------------------------------------------------------------------
# Shape matchers
# ---------------------------------------------------------------------------


def _chat_message(body: Any) -> str | None:
    choice = _first_choice(body)
    if choice is None or not isinstance(choice.get("message"), dict):
        return None
    return _content_text(choice["message"].get("content"))


def _legacy_text(body: Any) -> str | None:
    choice = _first_choice(body)
    return _non_blank(choice.get("text")) if choice else None


def _stream_delta(body: Any) -> str | None:
    choice = _first_choice(body)
    if choice is None or not isinstance(choice.get("delta"), dict):
        return None
    return _content_text(choice["delta"].get("content"))


def _output_array(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    item = _first(body.get("output"))
    if not isinstance(item, dict):
        return None
    return _content_text(item.get("content"))


def _output_text(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    return _non_blank(body.get("output_text"))


def _serialized_body(body: Any) -> str | None:
    if isinstance(body, str):
        return body
    return _serialize(body)


RESPONSE_SHAPES: list[tuple[str, ShapeMatcher]] = [
    ("chat_message", _chat_message),
    ("legacy_text", _legacy_text),
    ("stream_delta", _stream_delta),
    ("output_array", _output_array),
    ("output_text", _output_text),
    ("serialized_body", _serialized_body),
]


def register_shape(name: str, matcher: ShapeMatcher, before: str = "serialized_body") -> None:
    """Insert a matcher ahead of ``before`` (the fallback by default)."""
    names = [existing for existing, _ in RESPONSE_SHAPES]
    index = names.index(before) if before in names else len(RESPONSE_SHAPES)
    RESPONSE_SHAPES.insert(index, (name, matcher))


def extract_text(body: Any) -> str | None:
    """Return the generated text from a response body, or None for a None body.

    Never raises: a matcher that blows up on an unexpected shape is skipped.
    """
    if body is None:
        return None

    for name, matcher in RESPONSE_SHAPES:
        try:
            text = matcher(body)
        except Exception as e:
            logger.debug("Response shape %s failed: %s", name, e)
            continue
        if text is not None and text.strip():
            if name != "chat_message":
                logger.debug("Extracted text via %s shape", name)
            return text

    return None


def extract_finish_reason(body: Any) -> str | None:
    """finish_reason of the first choice, when the body has one."""
    choice = _first_choice(body)
    if choice is None:
        return None
    reason = choice.get("finish_reason")
    return reason if isinstance(reason, str) else None


def extract_usage(body: Any) -> tuple[int, int]:
    """(input_tokens, output_tokens) from an OpenAI-style usage block."""
    if not isinstance(body, dict) or not isinstance(body.get("usage"), dict):
        return 0, 0
    usage = body["usage"]
    try:
        return int(usage.get("prompt_tokens") or 0), int(usage.get("completion_tokens") or 0)
    except (TypeError, ValueError):
        return 0, 0
