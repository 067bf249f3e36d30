"""Best-effort recovery of a JSON object embedded in model text."""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\n?(.*?)```", re.DOTALL)


class JSONExtractionError(ValueError):
    pass


def strip_code_fences(text: str) -> str:
    """Replace fenced blocks with their bodies."""
    return _FENCE_RE.sub(lambda m: m.group(1), text)


def balanced_object_spans(text: str):
    """Yield ``(start, end)`` of each top-level balanced ``{...}`` span.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield start, i + 1


def extract_json_object(text: str, any_of: tuple[str, ...] = ()) -> dict[str, Any]:
    """First embedded JSON object in ``text``.

    With ``any_of``, objects carrying none of those keys are skipped.

    Raises ``JSONExtractionError`` describing why nothing usable was found.
    """
    if not text or not text.strip():
        raise JSONExtractionError("Provider returned empty text")

    cleaned = strip_code_fences(text)
    last_error = "No JSON object found in provider output"
    for start, end in balanced_object_spans(cleaned):
        try:
            value = json.loads(cleaned[start:end])
        except ValueError as e:
            last_error = f"Invalid embedded JSON: {e}"
            continue
        if not isinstance(value, dict):
            continue
        if any_of and not any(key in value for key in any_of):
            last_error = f"Embedded JSON has none of: {', '.join(any_of)}"
            continue
        return value
    raise JSONExtractionError(last_error)
