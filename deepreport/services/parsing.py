"""Tagged parse results for loosely structured model output.

Model replies are free-form text that usually, but not always, contain a JSON fragment.
Call sites get either ``Parsed(value)`` or ``ParseFailure(reason)`` and must pick an
explicit fallback for the failure case; nothing here retries or re-prompts.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class ParseFailure:
    reason: str
    raw: str = ""


ParseResult = Union[Parsed[T], ParseFailure]


def unwrap_or(result: ParseResult[T], fallback: T) -> T:
    if isinstance(result, Parsed):
        return result.value
    return fallback


def _strip_code_fence(raw_text: str) -> str:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def _extract_json(raw_text: str, opener: str, closer: str, expected: type) -> ParseResult[Any]:
    if not isinstance(raw_text, str) or not raw_text.strip():
        return ParseFailure("empty response")
    text = _strip_code_fence(raw_text)
    start = text.find(opener)
    if start < 0 or closer not in text[start:]:
        return ParseFailure(f"no {expected.__name__} found", raw_text[:200])

    # Fragments are tried left to right; the first one of the expected type wins.
    decoder = json.JSONDecoder()
    reason = f"expected {expected.__name__}"
    while start >= 0:
        try:
            parsed, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError as exc:
            reason = f"invalid json: {exc.msg}"
        else:
            if isinstance(parsed, expected):
                return Parsed(parsed)
        start = text.find(opener, start + 1)
    return ParseFailure(reason, raw_text[:200])


def extract_json_array(raw_text: str) -> ParseResult[list[Any]]:
    """Pull the first decodable ``[...]`` fragment out of a reply and decode it."""
    return _extract_json(raw_text, "[", "]", list)


def extract_json_object(raw_text: str) -> ParseResult[dict[str, Any]]:
    """Pull the first decodable ``{...}`` fragment out of a reply and decode it."""
    return _extract_json(raw_text, "{", "}", dict)


def normalize_text_list(raw_values: Any, *, max_items: int, min_len: int = 1) -> list[str]:
    """Whitespace-normalize a list of strings, dropping non-strings and case-insensitive repeats."""
    if not isinstance(raw_values, list):
        return []
    cleaned: list[str] = []
    seen: set[str] = set()
    for item in raw_values:
        if not isinstance(item, str):
            continue
        value = " ".join(item.split()).strip()
        if len(value) < min_len:
            continue
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(value)
        if len(cleaned) >= max_items:
            break
    return cleaned
