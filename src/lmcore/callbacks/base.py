"""Callback handler interface.

A handler observes run lifecycle events. Every event method is optional:
subclasses override the ones they care about, either as plain methods or as
coroutines, and the rest stay no-ops.

Example:
    >>> class TokenCollector(BaseCallbackHandler):
    ...     def __init__(self) -> None:
    ...         self.tokens: list[str] = []
    ...     def on_llm_new_token(self, token: str, **kwargs: Any) -> None:
    ...         self.tokens.append(token)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from ..messages import BaseMessage
    from ..outputs import LLMResult

LLM_EVENTS = frozenset({"on_llm_start", "on_chat_model_start", "on_llm_new_token", "on_llm_end", "on_llm_error"})
CHAIN_EVENTS = frozenset({"on_chain_start", "on_chain_end", "on_chain_error"})
EVENT_NAMES = LLM_EVENTS | CHAIN_EVENTS


class BaseCallbackHandler:
    """Base class for callback handlers.

    Attributes:
        raise_error: Propagate exceptions raised by this handler instead of
            logging them and continuing
        ignore_llm: Skip model events
        ignore_chain: Skip chain events
    """

    raise_error: bool = False
    ignore_llm: bool = False
    ignore_chain: bool = False

    @property
    def name(self) -> str:
        return type(self).__name__

    def on_llm_start(
        self,
        serialized: dict[str, Any],
        prompts: list[str],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Run when a text model starts; one call per prompt."""

    def on_chat_model_start(
        self,
        serialized: dict[str, Any],
        messages: list[list[BaseMessage]],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Run when a chat model starts.

        Handlers that leave this unimplemented receive `on_llm_start` with
        the messages rendered as text instead.
        """

    def on_llm_new_token(self, token: str, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> Any:
        """Run for each streamed token, in generation order."""

    def on_llm_end(self, response: LLMResult, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> Any:
        """Run once when the model call succeeds."""

    def on_llm_error(
        self, error: BaseException, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any,
    ) -> Any:
        """Run once when the model call fails."""

    def on_chain_start(
        self,
        serialized: dict[str, Any],
        inputs: Any,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Run when a composed runnable starts."""

    def on_chain_end(self, outputs: Any, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> Any:
        """Run when a composed runnable finishes."""

    def on_chain_error(
        self, error: BaseException, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any,
    ) -> Any:
        """Run when a composed runnable fails."""

    def __repr__(self) -> str:
        return f"{self.name}()"


class FunctionCallbackHandler(BaseCallbackHandler):
    """Adapt a mapping of event name to callable into a handler.

    The callables are referenced, not copied, so state they close over stays
    shared with the caller.

    Example:
        >>> tokens: list[str] = []
        >>> handler = FunctionCallbackHandler({"on_llm_new_token": lambda token, **kw: tokens.append(token)})
    """

    def __init__(self, functions: Mapping[str, Callable[..., Any]], *, raise_error: bool = False) -> None:
        unknown = set(functions) - EVENT_NAMES
        if unknown:
            raise ValueError(f"Unknown callback events: {sorted(unknown)}. Expected any of {sorted(EVENT_NAMES)}")
        self.functions = dict(functions)
        self.raise_error = raise_error
        for event, fn in self.functions.items():
            setattr(self, event, fn)

    def __repr__(self) -> str:
        return f"FunctionCallbackHandler({sorted(self.functions)})"


def implements(handler: BaseCallbackHandler, event: str) -> bool:
    """Whether `handler` provides its own implementation of `event`."""
    if event in getattr(handler, "__dict__", {}):
        return True
    own = getattr(type(handler), event, None)
    return own is not None and own is not getattr(BaseCallbackHandler, event, None)
