"""Per-invocation call options.

CallOptions is an immutable record attached to one invocation. Model-level
defaults (from `bind`) and per-call overrides are layered with
`merge_call_options`; later layers win, except that tags are unioned and
metadata is merged.

Anything not declared below is kept as a provider keyword (`extra="allow"`)
and forwarded to the provider hooks.

Example:
    >>> opts = merge_call_options({"stop": ["\\n"], "tags": ["a"]}, {"tags": ["b"], "temperature": 0})
    >>> opts.stop, opts.tags, opts.provider_kwargs()
    (['\\n'], ['a', 'b'], {'temperature': 0})
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field

from ..callbacks.manager import BaseCallbackManager, CallbackManager, _handlers_of
from ..runtime.signal import AbortSignal

OptionsLike = Union["CallOptions", Mapping[str, Any], None]


class CallOptions(BaseModel):
    """Options for one invocation.

    Attributes:
        stop: Stop sequences forwarded to the provider
        timeout: Seconds allowed for the whole call, retries included
        signal: Abort signal that cancels the in-flight call
        tags: Tags attached to every callback event of the run
        metadata: Metadata attached to every callback event of the run
        callbacks: Handlers (or mappings of event name to callable) for this call
        run_name: Display name for the run in callback events
        max_concurrency: Ceiling on concurrent inputs in batch calls
    """

    model_config = ConfigDict(frozen=True, extra="allow", arbitrary_types_allowed=True)

    # Options that steer the runtime rather than the provider output
    RUNTIME_KEYS: ClassVar[frozenset[str]] = frozenset({
        "timeout", "signal", "tags", "metadata", "callbacks", "run_name", "max_concurrency",
    })

    stop: list[str] | None = None
    timeout: float | None = Field(default=None, gt=0)
    signal: AbortSignal | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    callbacks: Any = None
    run_name: str | None = None
    max_concurrency: int | None = Field(default=None, ge=1)

    def provider_kwargs(self) -> dict[str, Any]:
        """Extra keyword options destined for the provider."""
        return dict(self.model_extra or {})

    def cache_params(self) -> dict[str, Any]:
        """Options that influence the provider's output (and so the cache key)."""
        params = {k: v for k, v in self.provider_kwargs().items() if v is not None}
        if self.stop is not None:
            params["stop"] = self.stop
        return params

    def explicit(self) -> dict[str, Any]:
        """Fields that were set explicitly, extras included."""
        keys = self.model_fields_set | set(self.model_extra or {})
        return {k: getattr(self, k) for k in keys}


def ensure_options(options: OptionsLike) -> CallOptions:
    """Coerce None, a mapping, or CallOptions into CallOptions."""
    if options is None:
        return CallOptions()
    if isinstance(options, CallOptions):
        return options
    if isinstance(options, Mapping):
        return CallOptions(**options)
    raise TypeError(f"Expected CallOptions or a mapping, got {type(options).__name__}")


def merge_call_options(*layers: OptionsLike) -> CallOptions:
    """Layer option sets into a new CallOptions; later layers win.

    Tags are unioned preserving first occurrence order, metadata dicts are
    merged, and callbacks accumulate: lists are concatenated and handlers
    joining a callback manager are registered on a clone of it. Inputs are
    never mutated.
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer is None:
            continue
        for key, value in ensure_options(layer).explicit().items():
            match key:
                case "tags":
                    merged["tags"] = list(dict.fromkeys([*merged.get("tags", []), *value]))
                case "metadata":
                    merged["metadata"] = {**merged.get("metadata", {}), **value}
                case "callbacks":
                    merged["callbacks"] = _merge_callbacks(merged.get("callbacks"), value)
                case _:
                    merged[key] = value
    return CallOptions(**merged)


def _merge_callbacks(previous: Any, value: Any) -> Any:
    """Combine two callback layers without dropping handlers from either.

    A manager (a parent run's child manager) is cloned and the handlers of
    the other layer are registered on the clone; two managers resolve to the
    later one.
    """
    if previous is None:
        return value
    if value is None:
        return previous
    previous_is_manager = isinstance(previous, BaseCallbackManager)
    value_is_manager = isinstance(value, BaseCallbackManager)
    if previous_is_manager and value_is_manager:
        return value
    if previous_is_manager or value_is_manager:
        base, extra = (previous, value) if previous_is_manager else (value, previous)
        manager = CallbackManager.configure(base)
        for handler in _handlers_of(extra):
            manager.add_handler(handler, inherit=True)
        return manager
    return [*_as_list(previous), *_as_list(value)]


def _as_list(callbacks: Any) -> list[Any]:
    if isinstance(callbacks, (list, tuple)):
        return list(callbacks)
    return [callbacks]
