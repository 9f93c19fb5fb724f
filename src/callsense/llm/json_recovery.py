"""JSON extraction and recovery for LLM output.

Models wrap JSON in code fences, prepend reasoning, leave trailing commas
or get cut off at the token limit. ``recover_broken_json`` handles all four.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from callsense.llm.errors import AICompletionError
from callsense.models.enums import AIErrorCode

logger = structlog.get_logger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)(?:```|$)", re.DOTALL | re.IGNORECASE)


@dataclass
class JsonRecovery:
    """Parsed payload plus what had to be fixed to get it."""

    parsed: dict[str, Any]
    recovered: bool = False
    fixes_applied: list[str] = field(default_factory=list)


def _strip_code_fences(text: str) -> str:
    match = _CODE_FENCE.search(text)
    return match.group(1) if match else text


def _extract_json_from_text(text: str) -> str | None:
    """Return the first balanced JSON object in text, or None.

    Braces inside string literals are ignored.
    """
    brace_count = 0
    start_idx = None
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char == "{":
            if brace_count == 0:
                start_idx = i
            brace_count += 1
        elif char == "}" and brace_count > 0:
            brace_count -= 1
            if brace_count == 0 and start_idx is not None:
                return text[start_idx:i + 1]

    return None


def _clean_json_string(text: str) -> str:
    """Remove BOM/zero-width characters and trailing commas."""
    text = text.strip("\ufeff\u200b\u200c\u200d")
    return re.sub(r",(\s*[}\]])", r"\1", text)


def _close_truncated_json(text: str) -> str:
    """Close an unterminated string and any open arrays/objects.

    A dangling key or separator at the cut point is dropped first.
    """
    stack: list[str] = []
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()

    if in_string:
        text += '"'

    text = re.sub(r"(\d)\.$", r"\1", text.rstrip())
    # Drop an incomplete trailing member: `,"key"` / `"key":` / `,`
    text = re.sub(r',\s*"[^"]*"\s*:?\s*$', "", text)
    text = re.sub(r'[,:]\s*$', "", text)
    text = re.sub(r'\{\s*"[^"]*"\s*:?\s*$', "{", text)

    return text + "".join(reversed(stack))


def recover_broken_json(text: str, context_name: str = "llm") -> JsonRecovery:
    """Parse an LLM response into a JSON object, repairing it if needed.

    Args:
        text: Raw completion content.
        context_name: Call point used in log events.

    Returns:
        JsonRecovery with the parsed object and applied fixes.

    Raises:
        AICompletionError: With code PARSE if no JSON object can be recovered.
    """
    fixes: list[str] = []
    candidate = (text or "").strip()

    if "```" in candidate:
        candidate = _strip_code_fences(candidate).strip()
        fixes.append("strip_code_fence")

    try:
        parsed = json.loads(candidate)
        if isinstance(parsed, dict):
            return JsonRecovery(parsed=parsed, recovered=bool(fixes), fixes_applied=fixes)
    except json.JSONDecodeError:
        pass

    extracted = _extract_json_from_text(candidate)
    if extracted is not None and extracted != candidate:
        fixes.append("extract_object")
        candidate = extracted

    cleaned = _clean_json_string(candidate)
    if cleaned != candidate:
        fixes.append("remove_trailing_commas")
    candidate = cleaned

    try:
        parsed = json.loads(candidate)
        if isinstance(parsed, dict):
            return JsonRecovery(parsed=parsed, recovered=bool(fixes), fixes_applied=fixes)
    except json.JSONDecodeError:
        pass

    start = candidate.find("{")
    if start >= 0:
        closed = _clean_json_string(_close_truncated_json(candidate[start:]))
        try:
            parsed = json.loads(closed)
            if isinstance(parsed, dict):
                fixes.append("close_truncated")
                logger.info(f"{context_name}_json_recovered", fixes=fixes)
                return JsonRecovery(parsed=parsed, recovered=True, fixes_applied=fixes)
        except json.JSONDecodeError:
            pass

    logger.warning(f"{context_name}_json_unrecoverable", preview=(text or "")[:200])
    raise AICompletionError(AIErrorCode.PARSE, "response is not valid JSON", call_point=context_name)
