"""Pull a JSON array out of free-form model output.

Models are asked for JSON but often wrap it in prose or a fenced block, or leave
a trailing comma before a closing bracket. Each strategy below maps the raw text
to a candidate substring; candidates are tried in order and the first that
parses into a usable shape wins.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, List, Optional, Sequence

Strategy = Callable[[str], Optional[str]]

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([\]}])")


def fenced_json_block(text: str) -> Optional[str]:
    match = _FENCED_JSON.search(text)
    if not match or not match.group(1).strip():
        return None
    return match.group(1)


def _between(text: str, open_char: str, close_char: str) -> Optional[str]:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start < 0 or end <= start:
        return None
    return text[start:end + 1]


def bracketed_array(text: str) -> Optional[str]:
    return _between(text, "[", "]")


def braced_object(text: str) -> Optional[str]:
    return _between(text, "{", "}")


def raw_text(text: str) -> Optional[str]:
    return text


STRATEGIES: tuple[Strategy, ...] = (
    fenced_json_block,
    bracketed_array,
    braced_object,
    raw_text,
)


def strip_trailing_commas(blob: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", blob)


def parse_lenient(blob: str) -> Any:
    """Strict parse, then once more with trailing commas removed. None if both fail."""
    for attempt in (blob, strip_trailing_commas(blob)):
        try:
            return json.loads(attempt)
        except (ValueError, RecursionError):
            continue
    return None


def _as_list(value: Any, keys: Sequence[str]) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in keys:
            inner = value.get(key)
            if isinstance(inner, list):
                return inner
    return None


def extract_structured_payload(
    text: str,
    keys: Sequence[str] = ("updates",),
    strategies: Sequence[Strategy] = STRATEGIES,
) -> Optional[List[Any]]:
    """Return the first JSON array found in ``text``.

    A bare array counts, as does an object carrying an array under one of
    ``keys`` (e.g. ``{"updates": [...]}``). Returns None when nothing parses;
    callers treat that as a degraded response, not an error.
    """
    if not text or not text.strip():
        return None
    for strategy in strategies:
        blob = strategy(text)
        if blob is None:
            continue
        found = _as_list(parse_lenient(blob), keys)
        if found is not None:
            return found
    return None
