"""Base class for parsers that turn model output into values."""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Generic, TypeVar

from ..messages import BaseMessage
from ..runnables.base import Runnable
from ..runnables.config import OptionsLike

T = TypeVar("T")


class BaseOutputParser(Runnable[Any, T], Generic[T]):
    """Parses a model's text output.

    Accepts either a message (its text content is parsed) or a plain string,
    so a parser can follow both chat and completion models in a sequence.
    """

    @abstractmethod
    def parse(self, text: str) -> T:
        """Parse raw text; raise OutputParserException on failure."""

    def parse_message(self, message: BaseMessage) -> T:
        return self.parse(message.text)

    async def ainvoke(self, input: BaseMessage | str, options: OptionsLike = None) -> T:
        if isinstance(input, BaseMessage):
            return self.parse_message(input)
        if isinstance(input, str):
            return self.parse(input)
        raise TypeError(f"{type(self).__name__} expects a message or str, got {type(input).__name__}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
