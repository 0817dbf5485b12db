"""Callback managers: fan lifecycle events out to registered handlers.

A CallbackManager holds the handlers, tags and metadata configured for one
invocation. Starting a run returns a run manager bound to a fresh run id;
the run manager emits the run's remaining events and hands out child
managers for nested runs.

Dispatch policy:
- Handlers are called in registration order and each one is awaited before
  the next, so a single run's events reach every handler in emission order
- A handler that raises is logged and skipped; remaining handlers still run
  and the invocation outcome is unchanged (unless the handler sets raise_error)
- Handlers are referenced, never cloned; registering is additive only
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Self, TypeVar, Union
from uuid import UUID, uuid4

from .base import BaseCallbackHandler, FunctionCallbackHandler, implements

if TYPE_CHECKING:
    from ..messages import BaseMessage
    from ..outputs import LLMResult

logger = logging.getLogger("lmcore.callbacks")

HandlerLike = Union[BaseCallbackHandler, Mapping[str, Any]]
Callbacks = Union[Sequence[HandlerLike], HandlerLike, "BaseCallbackManager", None]
R = TypeVar("R", bound="BaseRunManager")


def coerce_handler(handler: HandlerLike) -> BaseCallbackHandler:
    if isinstance(handler, Mapping):
        return FunctionCallbackHandler(handler)
    return handler


def _handlers_of(callbacks: Callbacks) -> list[BaseCallbackHandler]:
    match callbacks:
        case None:
            return []
        case BaseCallbackManager():
            return list(callbacks.handlers)
        case Mapping() | BaseCallbackHandler():
            return [coerce_handler(callbacks)]
        case _:
            return [coerce_handler(h) for h in callbacks]


async def _dispatch(
    handlers: Sequence[BaseCallbackHandler],
    event: str,
    ignore_flag: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    for handler in handlers:
        if getattr(handler, ignore_flag, False):
            continue
        try:
            if event == "on_chat_model_start" and not implements(handler, event):
                from ..messages import get_buffer_string

                serialized, messages = args
                result = handler.on_llm_start(serialized, [get_buffer_string(m) for m in messages], **kwargs)
            else:
                method = getattr(handler, event, None)
                if method is None:
                    continue
                result = method(*args, **kwargs)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            if getattr(handler, "raise_error", False):
                raise
            logger.warning(f"Error in {type(handler).__name__}.{event} callback: {e!r}")


class BaseCallbackManager:
    """Handlers, tags and metadata split into local and inheritable sets.

    Local entries apply to runs started from this manager only; inheritable
    ones also propagate to child runs.
    """

    def __init__(
        self,
        handlers: Sequence[BaseCallbackHandler] | None = None,
        inheritable_handlers: Sequence[BaseCallbackHandler] | None = None,
        parent_run_id: UUID | None = None,
        *,
        tags: Sequence[str] | None = None,
        inheritable_tags: Sequence[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
        inheritable_metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self.handlers: list[BaseCallbackHandler] = list(handlers or [])
        self.inheritable_handlers: list[BaseCallbackHandler] = list(inheritable_handlers or [])
        self.parent_run_id = parent_run_id
        self.tags: list[str] = list(tags or [])
        self.inheritable_tags: list[str] = list(inheritable_tags or [])
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.inheritable_metadata: dict[str, Any] = dict(inheritable_metadata or {})

    def add_handler(self, handler: HandlerLike, inherit: bool = True) -> None:
        """Register a handler; a handler already registered is not added twice."""
        handler = coerce_handler(handler)
        if not any(h is handler for h in self.handlers):
            self.handlers.append(handler)
        if inherit and not any(h is handler for h in self.inheritable_handlers):
            self.inheritable_handlers.append(handler)

    def add_tags(self, tags: Sequence[str], inherit: bool = True) -> None:
        for tag in tags:
            if tag not in self.tags:
                self.tags.append(tag)
            if inherit and tag not in self.inheritable_tags:
                self.inheritable_tags.append(tag)

    def add_metadata(self, metadata: Mapping[str, Any], inherit: bool = True) -> None:
        self.metadata.update(metadata)
        if inherit:
            self.inheritable_metadata.update(metadata)

    def copy(self) -> Self:
        """Shallow copy: new registration lists, same handler objects."""
        return type(self)(
            self.handlers,
            self.inheritable_handlers,
            self.parent_run_id,
            tags=self.tags,
            inheritable_tags=self.inheritable_tags,
            metadata=self.metadata,
            inheritable_metadata=self.inheritable_metadata,
        )

    def _start_kwargs(self, run_id: UUID) -> dict[str, Any]:
        return {"run_id": run_id, "parent_run_id": self.parent_run_id, "tags": list(self.tags), "metadata": dict(self.metadata)}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(handlers={self.handlers!r}, parent_run_id={self.parent_run_id})"


class CallbackManager(BaseCallbackManager):
    """Starts runs and returns the run managers that carry them."""

    async def on_llm_start(
        self, serialized: dict[str, Any], prompts: list[str], *, run_id: UUID | None = None, **kwargs: Any,
    ) -> list[CallbackManagerForLLMRun]:
        """Start one run per prompt. `run_id` applies to the first prompt only."""
        managers = []
        for i, prompt in enumerate(prompts):
            rid = run_id if (i == 0 and run_id is not None) else uuid4()
            await _dispatch(self.handlers, "on_llm_start", "ignore_llm", serialized, [prompt], **self._start_kwargs(rid), **kwargs)
            managers.append(self._run_manager(CallbackManagerForLLMRun, rid))
        return managers

    async def on_chat_model_start(
        self,
        serialized: dict[str, Any],
        messages: list[list[BaseMessage]],
        *,
        run_id: UUID | None = None,
        **kwargs: Any,
    ) -> list[CallbackManagerForLLMRun]:
        """Start one run per message list. `run_id` applies to the first list only."""
        managers = []
        for i, message_list in enumerate(messages):
            rid = run_id if (i == 0 and run_id is not None) else uuid4()
            await _dispatch(
                self.handlers, "on_chat_model_start", "ignore_llm", serialized, [message_list],
                **self._start_kwargs(rid), **kwargs,
            )
            managers.append(self._run_manager(CallbackManagerForLLMRun, rid))
        return managers

    async def on_chain_start(
        self, serialized: dict[str, Any], inputs: Any, *, run_id: UUID | None = None, **kwargs: Any,
    ) -> CallbackManagerForChainRun:
        rid = run_id or uuid4()
        await _dispatch(self.handlers, "on_chain_start", "ignore_chain", serialized, inputs, **self._start_kwargs(rid), **kwargs)
        return self._run_manager(CallbackManagerForChainRun, rid)

    def _run_manager(self, cls: type[R], run_id: UUID) -> R:
        return cls(
            run_id=run_id,
            handlers=self.handlers,
            inheritable_handlers=self.inheritable_handlers,
            parent_run_id=self.parent_run_id,
            tags=self.tags,
            inheritable_tags=self.inheritable_tags,
            metadata=self.metadata,
            inheritable_metadata=self.inheritable_metadata,
        )

    @classmethod
    def configure(
        cls,
        inheritable_callbacks: Callbacks = None,
        local_callbacks: Callbacks = None,
        verbose: bool = False,
        inheritable_tags: Sequence[str] | None = None,
        local_tags: Sequence[str] | None = None,
        inheritable_metadata: Mapping[str, Any] | None = None,
        local_metadata: Mapping[str, Any] | None = None,
    ) -> CallbackManager:
        """Build the manager for one invocation.

        Args:
            inheritable_callbacks: Call-level callbacks, or the parent's manager
                for a nested run; these propagate to child runs
            local_callbacks: Model-level callbacks for this run only
            verbose: Attach a LoggingCallbackHandler
            inheritable_tags / local_tags: Tags for the run
            inheritable_metadata / local_metadata: Metadata for the run
        """
        if isinstance(inheritable_callbacks, BaseCallbackManager):
            manager = cls(
                handlers=inheritable_callbacks.handlers,
                inheritable_handlers=inheritable_callbacks.inheritable_handlers,
                parent_run_id=inheritable_callbacks.parent_run_id,
                tags=inheritable_callbacks.tags,
                inheritable_tags=inheritable_callbacks.inheritable_tags,
                metadata=inheritable_callbacks.metadata,
                inheritable_metadata=inheritable_callbacks.inheritable_metadata,
            )
        else:
            manager = cls()
            for handler in _handlers_of(inheritable_callbacks):
                manager.add_handler(handler, inherit=True)

        for handler in _handlers_of(local_callbacks):
            manager.add_handler(handler, inherit=False)

        if inheritable_tags:
            manager.add_tags(inheritable_tags, inherit=True)
        if local_tags:
            manager.add_tags(local_tags, inherit=False)
        if inheritable_metadata:
            manager.add_metadata(inheritable_metadata, inherit=True)
        if local_metadata:
            manager.add_metadata(local_metadata, inherit=False)

        if verbose:
            from .logging import LoggingCallbackHandler

            if not any(isinstance(h, LoggingCallbackHandler) for h in manager.handlers):
                manager.add_handler(LoggingCallbackHandler(), inherit=False)
        return manager


class BaseRunManager(BaseCallbackManager):
    """Carries one run from its start event to its terminal event.

    A run ends exactly once: after an end or error event, any further event
    for the run raises RuntimeError.
    """

    def __init__(self, *, run_id: UUID, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.run_id = run_id
        self._outcome: str | None = None

    @property
    def finished(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> str | None:
        """'end', 'error', or None while the run is in progress."""
        return self._outcome

    def _ensure_running(self, event: str) -> None:
        if self._outcome is not None:
            raise RuntimeError(f"Run {self.run_id} already ended with {self._outcome!r}; cannot emit {event}")

    def _finish(self, event: str, outcome: str) -> None:
        self._ensure_running(event)
        self._outcome = outcome

    def _run_kwargs(self) -> dict[str, Any]:
        return {"run_id": self.run_id, "parent_run_id": self.parent_run_id}

    def get_child(self, tag: str | None = None) -> CallbackManager:
        """Manager for runs nested under this one; only inheritable entries propagate."""
        child = CallbackManager(
            handlers=self.inheritable_handlers,
            inheritable_handlers=self.inheritable_handlers,
            parent_run_id=self.run_id,
            tags=self.inheritable_tags,
            inheritable_tags=self.inheritable_tags,
            metadata=self.inheritable_metadata,
            inheritable_metadata=self.inheritable_metadata,
        )
        if tag is not None:
            child.add_tags([tag], inherit=False)
        return child

    def copy(self) -> Self:
        raise TypeError("Run managers are bound to a single run and cannot be copied")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(run_id={self.run_id}, outcome={self._outcome!r})"


class CallbackManagerForLLMRun(BaseRunManager):
    """Run manager for one model call on one prompt.

    `tokens` holds every token emitted for the run, in order.
    """

    def __init__(self, *, run_id: UUID, **kwargs: Any) -> None:
        super().__init__(run_id=run_id, **kwargs)
        self.tokens: list[str] = []

    async def on_llm_new_token(self, token: str, **kwargs: Any) -> None:
        self._ensure_running("on_llm_new_token")
        self.tokens.append(token)
        await _dispatch(self.handlers, "on_llm_new_token", "ignore_llm", token, **self._run_kwargs(), **kwargs)

    async def on_llm_end(self, response: LLMResult, **kwargs: Any) -> None:
        self._finish("on_llm_end", "end")
        await _dispatch(self.handlers, "on_llm_end", "ignore_llm", response, **self._run_kwargs(), **kwargs)

    async def on_llm_error(self, error: BaseException, **kwargs: Any) -> None:
        self._finish("on_llm_error", "error")
        await _dispatch(self.handlers, "on_llm_error", "ignore_llm", error, **self._run_kwargs(), **kwargs)


class CallbackManagerForChainRun(BaseRunManager):
    """Run manager for one composed runnable invocation."""

    async def on_chain_end(self, outputs: Any, **kwargs: Any) -> None:
        self._finish("on_chain_end", "end")
        await _dispatch(self.handlers, "on_chain_end", "ignore_chain", outputs, **self._run_kwargs(), **kwargs)

    async def on_chain_error(self, error: BaseException, **kwargs: Any) -> None:
        self._finish("on_chain_error", "error")
        await _dispatch(self.handlers, "on_chain_error", "ignore_chain", error, **self._run_kwargs(), **kwargs)
