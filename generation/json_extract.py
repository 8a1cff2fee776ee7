"""Pull a JSON object out of free-form model output."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from typing import Any

import orjson

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def _balanced_objects(text: str) -> Iterator[str]:
    """Yield every top-level ``{...}`` span, honouring JSON string escapes."""
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
                yield text[start:i + 1]


def _candidates(text: str) -> Iterator[str]:
    stripped = text.strip()
    if stripped:
        yield stripped
    for match in _FENCE_RE.finditer(text):
        yield match.group(1).strip()
    yield from _balanced_objects(text)


def extract_json_with_array(text: str, key: str) -> dict[str, Any] | None:
    """First JSON object in *text* whose *key* holds a list, else None."""
    for candidate in _candidates(text):
        try:
            value = orjson.loads(candidate)
        except orjson.JSONDecodeError:
            continue
        if isinstance(value, dict) and isinstance(value.get(key), list):
            return value
    logger.debug("No JSON object with a %r array in %d chars", key, len(text))
    return None
