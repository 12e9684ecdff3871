"""
JSON extraction for LLM responses.

Models often wrap JSON in markdown fences or add a sentence before it.

Example:
    from reportflow.utils.json_utils import parse_json_object

    data = parse_json_object('Sure!\\n```json\\n{"period": "Q3"}\\n```')
    # {'period': 'Q3'}
"""

import json
import logging
import re
from typing import Any, Literal

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BRACKETS = {"object": ("{", "}"), "array": ("[", "]")}


def extract_json(
    text: str,
    json_type: Literal["object", "array", "auto"] = "auto",
) -> str:
    """
    Cut the first JSON object or array out of a model response.

    Args:
        text: Raw model response
        json_type: "object", "array", or "auto" (whichever bracket comes first)

    Returns:
        JSON substring, or "" when there is no opening bracket
    """
    if not text:
        return ""

    cleaned = text.strip()
    fenced = _FENCE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()

    if json_type == "auto":
        positions = {
            kind: cleaned.find(open_)
            for kind, (open_, _) in _BRACKETS.items()
            if cleaned.find(open_) != -1
        }
        if not positions:
            return ""
        json_type = min(positions, key=positions.get)

    open_bracket, close_bracket = _BRACKETS[json_type]
    start = cleaned.find(open_bracket)
    if start == -1:
        return ""
    return _balanced_prefix(cleaned[start:], open_bracket, close_bracket)


def _balanced_prefix(text: str, open_bracket: str, close_bracket: str) -> str:
    """Return text up to the bracket closing the first one (strings skipped)."""
    depth = 0
    in_string = False
    escaped = False

    for i, char in enumerate(text):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif char == open_bracket:
            depth += 1
        elif char == close_bracket:
            depth -= 1
            if depth == 0:
                return text[: i + 1]

    # Unbalanced: let json.loads report it
    return text


def parse_json_object(text: str) -> dict[str, Any] | None:
    """
    Extract and parse a JSON object from a model response.

    Returns:
        Parsed dict, or None if no valid object was found
    """
    candidate = extract_json(text, json_type="object")
    if not candidate:
        logger.warning("No JSON object in response")
        return None

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        preview = candidate[:200] + "..." if len(candidate) > 200 else candidate
        logger.warning(f"Failed to parse JSON: {e}. Input: {preview}")
        return None

    return data if isinstance(data, dict) else None
