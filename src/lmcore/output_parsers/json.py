"""JSON output parsing, tolerant of markdown code fences."""

from __future__ import annotations

import re
from typing import Any

import orjson

from ..errors import OutputParserException
from .base import BaseOutputParser

# Whole text is one fenced block; the closing fence may be cut off mid-stream
_LEADING_FENCE = re.compile(r"\A```(?:json)?\s*(.*?)\s*(?:```)?\Z", re.DOTALL)
_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


def parse_json_markdown(text: str) -> Any:
    """Parse JSON that may be wrapped in a ```json ... ``` block.

    Text that opens with a fence is read up to the final fence, so backticks
    inside JSON strings survive. Otherwise the text is parsed as is, then
    each fenced block embedded in prose is tried in order.

    Raises:
        orjson.JSONDecodeError: No candidate payload is valid JSON
    """
    stripped = text.strip()
    if stripped.startswith("```"):
        match = _LEADING_FENCE.match(stripped)
        return orjson.loads(match.group(1) if match else stripped)
    try:
        return orjson.loads(stripped)
    except orjson.JSONDecodeError as e:
        error = e
    for match in _FENCE.finditer(stripped):
        try:
            return orjson.loads(match.group(1))
        except orjson.JSONDecodeError as e:
            error = e
    raise error


class JsonOutputParser(BaseOutputParser[Any]):
    """Parse model text as a JSON value.

    Example:
        >>> JsonOutputParser().parse('```json\\n{"a": 1}\\n```')
        {'a': 1}
    """

    def parse(self, text: str) -> Any:
        try:
            return parse_json_markdown(text)
        except orjson.JSONDecodeError as e:
            raise OutputParserException(f"Invalid JSON output: {e}", llm_output=text) from e
