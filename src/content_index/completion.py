"""Parsing of LLM completions into a tagged result.

Completions are tried against a fixed list of pure parsers, in priority
order, and the first match wins:

1. the whole completion as a JSON document
2. the outermost ``[...]`` slice as a JSON array
3. a scrape of double-quoted strings
4. the stripped completion as plain text

Nothing here raises on malformed model output; an unusable completion
becomes ``ParseFailure``.
"""

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

QUOTED_STRING = re.compile(r'"([^"\n]+)"')
SCALAR_KEYS = ("summary", "text", "response")


@dataclass(frozen=True)
class ArrayResult:
    items: list[Any]


@dataclass(frozen=True)
class ScalarText:
    text: str


@dataclass(frozen=True)
class ParseFailure:
    raw: str


CompletionResult = ArrayResult | ScalarText | ParseFailure
Parser = Callable[[str, str | None], CompletionResult | None]


def completion_text(completion: Any) -> str:
    """Normalize a completion (string, object with ``.text``, or dict) to text."""
    if completion is None:
        return ""
    if isinstance(completion, str):
        return completion
    text = getattr(completion, "text", None)
    if isinstance(text, str):
        return text
    if isinstance(completion, dict):
        for key in ("text", "response", "content"):
            if isinstance(completion.get(key), str):
                return completion[key]
    return str(completion)


def _from_json_value(value: Any, key: str | None) -> CompletionResult | None:
    if isinstance(value, list):
        return ArrayResult(value)
    if isinstance(value, str):
        return ScalarText(value.strip()) if value.strip() else None
    if not isinstance(value, dict):
        return None

    if key is not None and key in value:
        return _from_json_value(value[key], None)
    for item in value.values():
        if isinstance(item, list):
            return ArrayResult(item)
    for scalar_key in SCALAR_KEYS:
        if isinstance(value.get(scalar_key), str) and value[scalar_key].strip():
            return ScalarText(value[scalar_key].strip())
    strings = [v for v in value.values() if isinstance(v, str) and v.strip()]
    if len(strings) == 1:
        return ScalarText(strings[0].strip())
    return None


def parse_json_document(text: str, key: str | None = None) -> CompletionResult | None:
    try:
        value = json.loads(text.strip())
    except json.JSONDecodeError:
        return None
    return _from_json_value(value, key)


def extract_json_array(text: str, key: str | None = None) -> CompletionResult | None:
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        return None
    try:
        value = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return ArrayResult(value) if isinstance(value, list) else None


def scrape_quoted_strings(text: str, key: str | None = None) -> CompletionResult | None:
    found = [s.strip() for s in QUOTED_STRING.findall(text) if s.strip()]
    if key is not None:
        found = [s for s in found if s != key]
    return ArrayResult(found) if found else None


def plain_text(text: str, key: str | None = None) -> CompletionResult | None:
    stripped = text.strip()
    return ScalarText(stripped) if stripped else None


PARSERS: tuple[Parser, ...] = (
    parse_json_document,
    extract_json_array,
    scrape_quoted_strings,
    plain_text,
)


def parse_completion(completion: Any, key: str | None = None) -> CompletionResult:
    """Parse a completion into ArrayResult, ScalarText or ParseFailure.

    Args:
        completion: Raw completion (string or object carrying ``.text``)
        key: Preferred JSON key holding the answer (e.g. "interests")

    Example:
        >>> parse_completion('{"interests": ["ai", "seo"]}', key="interests")
        ArrayResult(items=['ai', 'seo'])
        >>> parse_completion('Here you go: ["ai"] hope it helps')
        ArrayResult(items=['ai'])
    """
    text = completion_text(completion)
    for parser in PARSERS:
        result = parser(text, key)
        if result is not None:
            return result
    return ParseFailure(text)
