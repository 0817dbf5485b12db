"""Extract tool call arguments from AI messages."""

from __future__ import annotations

from typing import Any

from ..errors import OutputParserException
from ..messages import AIMessage, BaseMessage
from .base import BaseOutputParser


class JsonOutputKeyToolsParser(BaseOutputParser[Any]):
    """Return the arguments of the tool calls named `key_name`.

    Args:
        key_name: Tool name to extract
        first_tool_only: Return the first matching call's arguments instead of a list

    Raises OutputParserException when the message has no matching call or
    the matching call's arguments could not be parsed.
    """

    def __init__(self, key_name: str, *, first_tool_only: bool = False) -> None:
        self.key_name = key_name
        self.first_tool_only = first_tool_only

    def parse(self, text: str) -> Any:
        raise OutputParserException(
            f"{type(self).__name__} needs an AI message with tool calls, got plain text", llm_output=text,
        )

    def parse_message(self, message: BaseMessage) -> Any:
        if not isinstance(message, AIMessage):
            raise OutputParserException(f"Expected an AI message, got {message.type!r}", llm_output=message)
        invalid = [c for c in message.invalid_tool_calls if c.name in (None, self.key_name)]
        if invalid:
            raise OutputParserException(
                f"Could not parse arguments of tool call {self.key_name!r}: {invalid[0].error}", llm_output=message,
            )
        matches = [call.args for call in message.tool_calls if call.name == self.key_name]
        if not matches:
            raise OutputParserException(f"No tool call named {self.key_name!r} in model output", llm_output=message)
        return matches[0] if self.first_tool_only else matches

    def __repr__(self) -> str:
        return f"JsonOutputKeyToolsParser(key_name={self.key_name!r}, first_tool_only={self.first_tool_only})"
