"""Lenient JSON parsing for model responses.

Models wrap JSON in code fences or surround it with prose; this extracts the
first complete JSON value and parses it with the standard json module.
"""

import json
from typing import Any

from smart_upload.extraction.exceptions import ExtractionError


def parse_model_json(raw: str) -> Any:
    """Parse a model response into a JSON value.

    Raises:
        ExtractionError: if no JSON object or array can be recovered.
    """
    cleaned = _strip_fences(raw)
    if not cleaned:
        raise ExtractionError("Empty model response")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    candidate = _first_balanced_value(cleaned)
    if candidate is None:
        raise ExtractionError("Model response contains no JSON object or array")
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Invalid JSON response: {exc}") from exc


def _strip_fences(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        lines = cleaned.splitlines()
        if lines and lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        cleaned = "\n".join(lines).strip()
    return cleaned


def _first_balanced_value(text: str) -> str | None:
    """Return the first {...} or [...] span whose brackets balance outside strings."""
    start = next((i for i, ch in enumerate(text) if ch in "{["), None)
    if start is None:
        return None
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start : i + 1]
    return None
