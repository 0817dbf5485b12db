"""Canonical prompt representations handed to models.

A prompt value can render itself both as a string (for completion models and
cache keys) and as a message list (for chat models).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict

from .messages import BaseMessage, HumanMessage, get_buffer_string


class PromptValue(BaseModel, ABC):
    """Base class for inputs to any language model."""

    model_config = ConfigDict(frozen=True)

    @abstractmethod
    def to_string(self) -> str: ...

    @abstractmethod
    def to_messages(self) -> list[BaseMessage]: ...


class StringPromptValue(PromptValue):
    """Single-turn prompt holding plain text."""

    text: str

    def to_string(self) -> str:
        return self.text

    def to_messages(self) -> list[BaseMessage]:
        return [HumanMessage(content=self.text)]


class ChatPromptValue(PromptValue):
    """Multi-turn prompt holding a message sequence."""

    messages: list[BaseMessage]

    def to_string(self) -> str:
        return get_buffer_string(self.messages)

    def to_messages(self) -> list[BaseMessage]:
        return list(self.messages)
