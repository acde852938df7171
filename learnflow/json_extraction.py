"""
Best-effort structured extraction of JSON from free-form model output.

Models wrap JSON in markdown fences, prepend chatter, or get cut off by the
token limit. extract_json() returns the first well-formed JSON array/object
found between balanced delimiters and never guesses repairs: truncated or
unbalanced output raises NoJsonFound.
"""

import json
import logging
import re
from typing import Any, Literal, Optional, Tuple

from .error_handler import NoJsonFound

logger = logging.getLogger(__name__)

Expect = Optional[Literal["array", "object"]]

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_OPENERS = {"[": "]", "{": "}"}
RAW_PREVIEW_CHARS = 500


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # An opening fence with no closing fence (truncated output)
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped[3:]
        if stripped[:4].lower() == "json":
            stripped = stripped[4:]
    return stripped.strip()


def _scan_value(text: str, start: int) -> Tuple[Optional[int], bool]:
    """
    Walk the bracketed value opening at `start`.

    Returns (end, truncated): `end` is the index just past the closing
    delimiter, or None when there is none. `truncated` is True when the text
    ran out while the value was still open.
    """
    stack = [_OPENERS[text[start]]]
    in_string = False
    escaped = False
    for index in range(start + 1, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _OPENERS:
            stack.append(_OPENERS[char])
        elif char in ("]", "}"):
            if char != stack.pop():
                return None, False
            if not stack:
                return index + 1, False
    return None, True


def find_balanced_span(text: str, start: int) -> Optional[Tuple[int, int]]:
    """
    Find the span [start, end) of the bracketed value opening at `start`.

    Delimiters inside JSON string literals (including escaped quotes) are
    ignored. Returns None if the value never closes or is mismatched.
    """
    end, _ = _scan_value(text, start)
    if end is None:
        return None
    return start, end


def extract_json(text: Optional[str], expect: Expect = None) -> Any:
    """
    Extract the first well-formed JSON array or object from `text`.

    Values of the other kind are searched for nested matches. A value that is
    still open when the text ends means the output was cut off; nothing nested
    inside it is returned.

    Args:
        text: raw model output
        expect: "array", "object", or None to accept either

    Returns:
        The parsed list or dict

    Raises:
        NoJsonFound: no balanced, parseable value of the expected kind exists,
            or the output is truncated
    """
    if not text or not text.strip():
        raise NoJsonFound("No content in model response", raw=text)

    body = strip_code_fences(text)
    wanted = {"array": "[", "object": "{"}.get(expect or "", "[{")
    kind = {"array": "JSON array", "object": "JSON object"}.get(expect or "", "JSON value")

    position = 0
    while True:
        candidates = [body.find(opener, position) for opener in _OPENERS]
        candidates = [index for index in candidates if index != -1]
        if not candidates:
            break
        start = min(candidates)
        end, truncated = _scan_value(body, start)
        if truncated:
            raise NoJsonFound(
                f"Could not find a complete {kind} in response (output looks truncated)",
                raw=text[:RAW_PREVIEW_CHARS],
            )
        if end is None or body[start] not in wanted:
            position = start + 1
            continue
        try:
            return json.loads(body[start:end])
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping unparseable JSON candidate at {start}: {e}")
            position = start + 1

    raise NoJsonFound(f"Could not find {kind} in response", raw=text[:RAW_PREVIEW_CHARS])
