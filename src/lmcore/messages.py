"""Chat message types and coercion of message-like inputs.

Messages are frozen pydantic models. AIMessageChunk instances are addable so
that a stream of chunks folds into one message:

    >>> chunk = AIMessageChunk(content="Hel") + AIMessageChunk(content="lo")
    >>> chunk.content
    'Hello'
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Literal, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, model_validator

MessageContent = Union[str, list[Union[str, dict[str, Any]]]]


class TokenUsage(BaseModel):
    """Token counts reported for one model call.

    `total_tokens` is derived from the parts when not given.
    """

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _fill_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("total_tokens"):
            total = data.get("prompt_tokens", 0) + data.get("completion_tokens", 0)
            data = {**data, "total_tokens": total}
        return data

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ToolCall(BaseModel):
    """A parsed request from the model to call a tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class InvalidToolCall(BaseModel):
    """A tool call whose arguments could not be parsed as a JSON object."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    args: str | None = None
    id: str | None = None
    error: str | None = None


class ToolCallChunk(BaseModel):
    """A fragment of a tool call as it arrives in a stream."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    args: str | None = None
    id: str | None = None
    index: int | None = None


class BaseMessage(BaseModel):
    """Base class for all chat messages."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    content: MessageContent = ""
    name: str | None = None
    id: str | None = None
    additional_kwargs: dict[str, Any] = Field(default_factory=dict)
    response_metadata: dict[str, Any] = Field(default_factory=dict)

    type: str = "base"

    @property
    def text(self) -> str:
        """Text content, with non-text parts of multimodal content dropped."""
        return content_text(self.content)

    def pretty_repr(self) -> str:
        return f"{ROLE_PREFIXES.get(self.type, self.type)}: {self.text}"


class HumanMessage(BaseMessage):
    type: Literal["human"] = "human"


class SystemMessage(BaseMessage):
    type: Literal["system"] = "system"


class ToolMessage(BaseMessage):
    type: Literal["tool"] = "tool"
    tool_call_id: str


class AIMessage(BaseMessage):
    """Message produced by a model."""

    type: Literal["ai"] = "ai"
    tool_calls: list[ToolCall] = Field(default_factory=list)
    invalid_tool_calls: list[InvalidToolCall] = Field(default_factory=list)
    usage_metadata: TokenUsage | None = None


class AIMessageChunk(AIMessage):
    """Streaming fragment of an AIMessage."""

    type: Literal["AIMessageChunk"] = "AIMessageChunk"  # type: ignore[assignment]
    tool_call_chunks: list[ToolCallChunk] = Field(default_factory=list)

    def __add__(self, other: AIMessageChunk) -> AIMessageChunk:
        if not isinstance(other, AIMessageChunk):
            return NotImplemented
        usage = self.usage_metadata
        if other.usage_metadata is not None:
            usage = other.usage_metadata if usage is None else usage + other.usage_metadata
        return AIMessageChunk(
            content=merge_content(self.content, other.content),
            name=self.name or other.name,
            id=self.id or other.id,
            additional_kwargs={**self.additional_kwargs, **other.additional_kwargs},
            response_metadata={**self.response_metadata, **other.response_metadata},
            tool_calls=[*self.tool_calls, *other.tool_calls],
            invalid_tool_calls=[*self.invalid_tool_calls, *other.invalid_tool_calls],
            tool_call_chunks=_merge_tool_call_chunks(self.tool_call_chunks, other.tool_call_chunks),
            usage_metadata=usage,
        )

    def to_message(self) -> AIMessage:
        """Finalize into an AIMessage, parsing streamed tool call arguments."""
        tool_calls = list(self.tool_calls)
        invalid = list(self.invalid_tool_calls)
        for chunk in self.tool_call_chunks:
            try:
                args = orjson.loads(chunk.args) if chunk.args else {}
            except orjson.JSONDecodeError as e:
                invalid.append(InvalidToolCall(name=chunk.name, args=chunk.args, id=chunk.id, error=str(e)))
                continue
            if chunk.name and isinstance(args, dict):
                tool_calls.append(ToolCall(name=chunk.name, args=args, id=chunk.id))
            else:
                invalid.append(InvalidToolCall(
                    name=chunk.name, args=chunk.args, id=chunk.id, error="Tool call arguments must be a JSON object",
                ))
        return AIMessage(
            content=self.content,
            name=self.name,
            id=self.id,
            additional_kwargs=self.additional_kwargs,
            response_metadata=self.response_metadata,
            tool_calls=tool_calls,
            invalid_tool_calls=invalid,
            usage_metadata=self.usage_metadata,
        )


ROLE_PREFIXES: dict[str, str] = {
    "human": "Human",
    "ai": "AI",
    "AIMessageChunk": "AI",
    "system": "System",
    "tool": "Tool",
}

_ROLE_ALIASES: dict[str, type[BaseMessage]] = {
    "human": HumanMessage,
    "user": HumanMessage,
    "ai": AIMessage,
    "assistant": AIMessage,
    "system": SystemMessage,
    "tool": ToolMessage,
}

_BY_TYPE: dict[str, type[BaseMessage]] = {
    "human": HumanMessage,
    "ai": AIMessage,
    "AIMessageChunk": AIMessageChunk,
    "system": SystemMessage,
    "tool": ToolMessage,
}

MessageLike = Union[BaseMessage, str, tuple[str, MessageContent], Mapping[str, Any]]


def coerce_message_like(value: MessageLike) -> BaseMessage:
    """Convert a message-like value into a message.

    Accepts a message (returned as is), a string (human turn), a
    `(role, content)` tuple or a mapping with `role` and `content` keys.

    Raises:
        ValueError: Unknown role or unsupported shape
    """
    if isinstance(value, BaseMessage):
        return value
    if isinstance(value, str):
        return HumanMessage(content=value)
    if isinstance(value, tuple) and len(value) == 2:
        role, content = value
        return _from_role(role, {"content": content})
    if isinstance(value, Mapping):
        data = dict(value)
        role = data.pop("role", None) or data.pop("type", None)
        if role is None:
            raise ValueError(f"Message mapping needs a 'role' key: {value!r}")
        return _from_role(role, data)
    raise ValueError(f"Cannot coerce {type(value).__name__} to a message")


def _from_role(role: str, fields: dict[str, Any]) -> BaseMessage:
    cls = _ROLE_ALIASES.get(role)
    if cls is None:
        raise ValueError(f"Unknown message role: {role!r}. Expected one of {sorted(_ROLE_ALIASES)}")
    return cls(**fields)


def message_from_dict(data: Mapping[str, Any]) -> BaseMessage:
    """Rebuild a message from its `model_dump()` form."""
    cls = _BY_TYPE.get(data.get("type", ""))
    if cls is None:
        raise ValueError(f"Unknown message type: {data.get('type')!r}")
    return cls.model_validate(data)


def get_buffer_string(messages: Sequence[BaseMessage]) -> str:
    """Render messages as one `Role: content` line each."""
    return "\n".join(m.pretty_repr() for m in messages)


def content_text(content: MessageContent) -> str:
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif part.get("type") == "text" and isinstance(part.get("text"), str):
            parts.append(part["text"])
    return "".join(parts)


def merge_content(left: MessageContent, right: MessageContent) -> MessageContent:
    if isinstance(left, str) and isinstance(right, str):
        return left + right
    as_list = lambda c: [c] if isinstance(c, str) else list(c)  # noqa: E731
    return [p for p in (*as_list(left), *as_list(right)) if p != ""]


def _merge_tool_call_chunks(left: list[ToolCallChunk], right: list[ToolCallChunk]) -> list[ToolCallChunk]:
    if not right:
        return list(left)
    merged = list(left)
    for chunk in right:
        idx = next(
            (i for i, existing in enumerate(merged) if chunk.index is not None and existing.index == chunk.index),
            None,
        )
        if idx is None:
            merged.append(chunk)
            continue
        prev = merged[idx]
        merged[idx] = ToolCallChunk(
            name=(prev.name or "") + (chunk.name or "") or None,
            args=(prev.args or "") + (chunk.args or "") or None,
            id=prev.id or chunk.id,
            index=prev.index,
        )
    return merged
