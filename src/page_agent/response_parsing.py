"""Lenient extraction of the JSON object embedded in a model response."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ResponseParseError(ValueError):
    """Raised when no usable JSON object can be recovered from model text."""


def extract_json_object(content: Optional[str]) -> Dict[str, Any]:
    """Return the first top-level JSON object found in ``content``."""
    payload_str = _extract_json_block(content or "")
    if not payload_str:
        raise ResponseParseError("Model produced an empty response")

    try:
        payload = json.loads(payload_str)
    except json.JSONDecodeError:
        sanitized = _sanitize_json_string(payload_str)
        try:
            payload = json.loads(sanitized)
        except json.JSONDecodeError as exc:
            logger.debug("Sanitized payload repr: %r", sanitized)
            raise ResponseParseError(f"Model returned invalid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ResponseParseError("Model response must be a JSON object")
    return payload


def _extract_json_block(content: str) -> str:
    trimmed = content.strip()
    trimmed = _remove_code_fences(trimmed)
    trimmed = _strip_json_prefix(trimmed)
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return trimmed
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start != -1 and end != -1 and end > start:
        return trimmed[start : end + 1]
    return ""


def _remove_code_fences(text: str) -> str:
    if text.startswith("```"):
        fence = text.split("```")
        if len(fence) >= 3:
            return fence[1].strip()
        return text.lstrip("`")
    return text


def _strip_json_prefix(text: str) -> str:
    if not text:
        return ""
    if text.lower().startswith("json"):
        return text[4:].lstrip(": \n\t")
    return text


_INVALID_ESCAPE_FINDER = re.compile(r"\\([^\"\\/bfnrtu])")
_TRAILING_COMMA = re.compile(r",\s*([\}\]])")


def _sanitize_json_string(data: str) -> str:
    """Fix non-json escapes (CSS escaping like '\\ '), trailing commas and stray quotes."""
    fixed = _TRAILING_COMMA.sub(r"\1", data)
    if "\\" in fixed:
        fixed = _INVALID_ESCAPE_FINDER.sub(r"\1", fixed)
        fixed = fixed.replace("\\ ", " ")
    return _escape_unquoted_quotes(fixed)


def _escape_unquoted_quotes(data: str) -> str:
    """Escape double quotes that appear inside string literals without backslashes."""
    result: List[str] = []
    in_string = False
    escaped = False
    bracket_depth = 0

    for idx, char in enumerate(data):
        if not in_string:
            if char == '"' and not escaped:
                in_string = True
                bracket_depth = 0
            result.append(char)
            escaped = char == "\\"
            continue

        if escaped:
            result.append(char)
            escaped = False
            continue

        if char == "\\":
            result.append(char)
            escaped = True
            continue

        if char == "[":
            bracket_depth += 1
            result.append(char)
            continue

        if char == "]" and bracket_depth:
            bracket_depth = max(0, bracket_depth - 1)
            result.append(char)
            continue

        if char == '"':
            # Look ahead to decide if this is the string terminator.
            next_idx = idx + 1
            while next_idx < len(data) and data[next_idx].isspace():
                next_idx += 1
            if bracket_depth == 0 and (next_idx >= len(data) or data[next_idx] in {",", "}", "]", ":"}):
                in_string = False
                result.append(char)
            else:
                result.append('\\"')
        else:
            result.append(char)

    return "".join(result)


__all__ = ["ResponseParseError", "extract_json_object"]
