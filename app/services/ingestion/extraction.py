"""Recover a JSON array or object from free-form model output.

Models are told to answer with bare JSON but regularly wrap it in prose or
markdown fences. Extraction is a two-stage parse:

1. the whole text is decoded as JSON;
2. failing that, exactly one balanced-bracket scan runs from the first
   opening token of the expected shape to its matching closing token, and
   that slice is decoded.

Nothing here raises on malformed input; callers get ``None`` instead. When
several independent JSON blocks are concatenated only the first balanced
region is considered.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

_OPENERS = {list: "[", dict: "{"}
_CLOSER_FOR = {"[": "]", "{": "}"}


def extract_json(text: str | None, *, expect: type[list] | type[dict]) -> list[Any] | dict[str, Any] | None:
    """Return the JSON value of the expected shape found in ``text``, or None."""
    if expect not in _OPENERS:
        raise ValueError("expect must be list or dict")
    if not text or not text.strip():
        return None

    candidate = text.strip()
    try:
        value = json.loads(candidate)
    except (ValueError, RecursionError):
        pass
    else:
        if isinstance(value, expect):
            return value
        logger.debug("extraction.wrong_shape", extra={"expected": expect.__name__})
        return None

    fragment = _balanced_fragment(candidate, _OPENERS[expect])
    if fragment is None:
        logger.debug("extraction.no_fragment", extra={"expected": expect.__name__})
        return None
    try:
        value = json.loads(fragment)
    except (ValueError, RecursionError):
        logger.debug("extraction.invalid_fragment", extra={"fragment": fragment[:200]})
        return None
    return value if isinstance(value, expect) else None


def extract_json_array(text: str | None) -> list[Any] | None:
    return extract_json(text, expect=list)


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    return extract_json(text, expect=dict)


def _balanced_fragment(text: str, opener: str) -> str | None:
    """Slice from the first ``opener`` to its matching closer, skipping string literals."""
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
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
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1] if char == _CLOSER_FOR[opener] else None
            if depth < 0:
                return None
    return None
