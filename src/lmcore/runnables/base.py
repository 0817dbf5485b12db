"""Composable units of work.

A Runnable takes one input and produces one output, asynchronously first.
Runnables compose with `|` into sequences; mappings of runnables run as
parallel branches; plain callables are wrapped as lambdas.

Composition:
    model | parser                      # RunnableSequence
    {"a": model_a, "b": model_b}        # RunnableParallel when piped
    model.bind(stop=["\\n"])             # RunnableBinding with fixed options

Sequences and parallels emit chain start/end/error callback events and pass
child callback managers down to their steps, so nested runs are linked to
their parent run id.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

from ..runtime.interop import iterate_sync, run_sync
from .config import CallOptions, OptionsLike, ensure_options, merge_call_options

if TYPE_CHECKING:
    from ..callbacks.manager import CallbackManagerForChainRun

Input = TypeVar("Input")
Output = TypeVar("Output")
Other = TypeVar("Other")

RunnableLike = Union["Runnable[Any, Any]", Callable[[Any], Any], Mapping[str, Any]]


class Runnable(ABC, Generic[Input, Output]):
    """A unit of work that can be invoked, streamed, batched and composed.

    Subclasses implement `ainvoke`; everything else has a default built on it.
    """

    def get_name(self) -> str:
        return getattr(self, "name", None) or type(self).__name__

    @abstractmethod
    async def ainvoke(self, input: Input, options: OptionsLike = None) -> Output:
        """Transform one input into one output."""
        ...

    def invoke(self, input: Input, options: OptionsLike = None) -> Output:
        return run_sync(self.ainvoke(input, options))

    async def astream(self, input: Input, options: OptionsLike = None) -> AsyncIterator[Output]:
        """Stream output chunks. Default: one chunk, the full `ainvoke` result."""
        yield await self.ainvoke(input, options)

    def stream(self, input: Input, options: OptionsLike = None) -> Iterator[Output]:
        yield from iterate_sync(self.astream(input, options))

    async def abatch(
        self,
        inputs: Sequence[Input],
        options: OptionsLike | Sequence[OptionsLike] = None,
        *,
        return_exceptions: bool = False,
    ) -> list[Output | BaseException]:
        """Invoke on every input concurrently, bounded by `max_concurrency`.

        `options` is either shared by all inputs or given per input.
        """
        if not inputs:
            return []
        per_input = _options_per_input(options, len(inputs))
        limit = per_input[0].max_concurrency
        semaphore = asyncio.Semaphore(limit) if limit else None

        async def one(value: Input, opts: CallOptions) -> Output:
            if semaphore is None:
                return await self.ainvoke(value, opts)
            async with semaphore:
                return await self.ainvoke(value, opts)

        return await asyncio.gather(
            *(one(v, o) for v, o in zip(inputs, per_input)), return_exceptions=return_exceptions,
        )

    def batch(
        self,
        inputs: Sequence[Input],
        options: OptionsLike | Sequence[OptionsLike] = None,
        *,
        return_exceptions: bool = False,
    ) -> list[Output | BaseException]:
        return run_sync(self.abatch(inputs, options, return_exceptions=return_exceptions))

    def pipe(self, *others: RunnableLike) -> RunnableSequence[Input, Any]:
        """Compose with the given runnables, feeding each output to the next."""
        return RunnableSequence(self, *others)

    def __or__(self, other: RunnableLike) -> RunnableSequence[Input, Any]:
        return RunnableSequence(self, other)

    def __ror__(self, other: RunnableLike) -> RunnableSequence[Any, Output]:
        return RunnableSequence(other, self)

    def bind(self, **kwargs: Any) -> Runnable[Input, Output]:
        """Fix call options (provider kwargs included) for every call."""
        return RunnableBinding(bound=self, kwargs=kwargs)

    def with_config(self, options: OptionsLike = None, **kwargs: Any) -> Runnable[Input, Output]:
        """Fix runtime options such as tags, callbacks or timeout for every call."""
        return RunnableBinding(bound=self, config=merge_call_options(options, kwargs))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _options_per_input(options: OptionsLike | Sequence[OptionsLike], count: int) -> list[CallOptions]:
    if isinstance(options, Sequence) and not isinstance(options, (str, Mapping)):
        if len(options) != count:
            raise ValueError(f"Got {len(options)} option sets for {count} inputs")
        return [ensure_options(o) for o in options]
    shared = ensure_options(options)  # type: ignore[arg-type]
    return [shared] * count


def _child_options(options: CallOptions, run: CallbackManagerForChainRun, tag: str) -> CallOptions:
    """Options for a nested step: runtime controls flow down, provider kwargs do not."""
    return CallOptions(
        callbacks=run.get_child(tag),
        timeout=options.timeout,
        signal=options.signal,
        max_concurrency=options.max_concurrency,
    )


async def _start_chain(runnable: Runnable[Any, Any], input: Any, options: CallOptions) -> CallbackManagerForChainRun:
    from ..callbacks.manager import CallbackManager

    manager = CallbackManager.configure(
        options.callbacks, inheritable_tags=options.tags, inheritable_metadata=options.metadata,
    )
    return await manager.on_chain_start({"name": runnable.get_name()}, input, name=options.run_name or runnable.get_name())


def _accumulate(acc: Any, chunk: Any) -> Any:
    if acc is None:
        return chunk
    try:
        return acc + chunk
    except TypeError:
        return chunk


class RunnableSequence(Runnable[Input, Output]):
    """Runs steps in order, each receiving the previous step's output.

    Example:
        >>> chain = RunnableLambda(str.upper) | (lambda s: s + "!")
        >>> chain.invoke("hi")
        'HI!'
    """

    def __init__(self, *steps: RunnableLike, name: str | None = None) -> None:
        flat: list[Runnable[Any, Any]] = []
        for step in steps:
            runnable = coerce_to_runnable(step)
            flat.extend(runnable.steps if isinstance(runnable, RunnableSequence) else [runnable])
        if len(flat) < 2:
            raise ValueError("RunnableSequence needs at least two steps")
        self.steps = flat
        self.name = name

    @property
    def first(self) -> Runnable[Any, Any]:
        return self.steps[0]

    @property
    def last(self) -> Runnable[Any, Any]:
        return self.steps[-1]

    def __or__(self, other: RunnableLike) -> RunnableSequence[Input, Any]:
        return RunnableSequence(*self.steps, other)

    def __ror__(self, other: RunnableLike) -> RunnableSequence[Any, Output]:
        return RunnableSequence(other, *self.steps)

    async def ainvoke(self, input: Input, options: OptionsLike = None) -> Output:
        opts = ensure_options(options)
        run = await _start_chain(self, input, opts)
        value: Any = input
        try:
            for i, step in enumerate(self.steps, 1):
                value = await step.ainvoke(value, _child_options(opts, run, f"seq:step:{i}"))
        except BaseException as e:
            await run.on_chain_error(e)
            raise
        await run.on_chain_end(value)
        return value

    async def astream(self, input: Input, options: OptionsLike = None) -> AsyncIterator[Output]:
        """Invoke all steps but the last, then stream the last step's output."""
        opts = ensure_options(options)
        run = await _start_chain(self, input, opts)
        value: Any = input
        final: Any = None
        try:
            for i, step in enumerate(self.steps[:-1], 1):
                value = await step.ainvoke(value, _child_options(opts, run, f"seq:step:{i}"))
            async for chunk in self.last.astream(value, _child_options(opts, run, f"seq:step:{len(self.steps)}")):
                final = _accumulate(final, chunk)
                yield chunk
        except BaseException as e:
            await run.on_chain_error(e)
            raise
        await run.on_chain_end(final)

    def __repr__(self) -> str:
        return " | ".join(repr(s) for s in self.steps)


class RunnableParallel(Runnable[Input, dict[str, Any]]):
    """Runs named branches concurrently on the same input, returning a dict.

    Example:
        >>> both = RunnableParallel({"upper": str.upper, "length": len})
        >>> both.invoke("abc")
        {'upper': 'ABC', 'length': 3}
    """

    def __init__(self, steps: Mapping[str, RunnableLike] | None = None, **kwargs: RunnableLike) -> None:
        merged = {**(steps or {}), **kwargs}
        self.steps: dict[str, Runnable[Any, Any]] = {k: coerce_to_runnable(v) for k, v in merged.items()}

    async def ainvoke(self, input: Input, options: OptionsLike = None) -> dict[str, Any]:
        opts = ensure_options(options)
        run = await _start_chain(self, input, opts)
        try:
            values = await asyncio.gather(*(
                step.ainvoke(input, _child_options(opts, run, f"map:key:{key}")) for key, step in self.steps.items()
            ))
        except BaseException as e:
            await run.on_chain_error(e)
            raise
        output = dict(zip(self.steps, values))
        await run.on_chain_end(output)
        return output

    def __repr__(self) -> str:
        return f"RunnableParallel({list(self.steps)})"


class RunnableLambda(Runnable[Input, Output]):
    """Wraps a sync or async one-argument callable."""

    def __init__(self, func: Callable[[Input], Output], name: str | None = None) -> None:
        if not callable(func):
            raise TypeError(f"RunnableLambda expects a callable, got {type(func).__name__}")
        self.func = func
        self.name = name or getattr(func, "__name__", None)

    async def ainvoke(self, input: Input, options: OptionsLike = None) -> Output:
        result = self.func(input)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Runnable):
            return await result.ainvoke(input, options)
        return result

    def __repr__(self) -> str:
        return f"RunnableLambda({self.get_name()})"


class RunnableBinding(Runnable[Input, Output]):
    """A runnable with call options fixed in advance.

    Bound kwargs and config are layered under the per-call options, so
    per-call values still win.
    """

    def __init__(
        self,
        bound: Runnable[Input, Output],
        kwargs: Mapping[str, Any] | None = None,
        config: OptionsLike = None,
    ) -> None:
        self.bound = bound
        self.kwargs = dict(kwargs or {})
        self.config = ensure_options(config)
        self.name = bound.get_name()

    def _options(self, options: OptionsLike) -> CallOptions:
        return merge_call_options(self.kwargs, self.config, options)

    async def ainvoke(self, input: Input, options: OptionsLike = None) -> Output:
        return await self.bound.ainvoke(input, self._options(options))

    async def astream(self, input: Input, options: OptionsLike = None) -> AsyncIterator[Output]:
        async for chunk in self.bound.astream(input, self._options(options)):
            yield chunk

    def bind(self, **kwargs: Any) -> Runnable[Input, Output]:
        return RunnableBinding(bound=self.bound, kwargs={**self.kwargs, **kwargs}, config=self.config)

    def with_config(self, options: OptionsLike = None, **kwargs: Any) -> Runnable[Input, Output]:
        return RunnableBinding(
            bound=self.bound, kwargs=self.kwargs, config=merge_call_options(self.config, options, kwargs),
        )

    def bind_tools(self, tools: Sequence[Any], **kwargs: Any) -> Runnable[Input, Output]:
        """Bind tools on the wrapped model, keeping this binding's kwargs and config."""
        return RunnableBinding(bound=self.bound.bind_tools(tools, **kwargs), kwargs=self.kwargs, config=self.config)

    def with_structured_output(self, schema: Any = None, **kwargs: Any) -> Runnable[Any, Any]:
        """Structured output over this binding, so bound options reach the provider."""
        from ..language_models.structured import build_structured_output

        if not hasattr(self.bound, "with_structured_output"):
            raise AttributeError(f"{type(self.bound).__name__} does not support structured output")
        return build_structured_output(self, schema, **kwargs)

    def __getattr__(self, name: str) -> Any:
        # Delegate model helpers (get_num_tokens, llm_string, ...) to the bound runnable
        if name.startswith("_") or name == "bound":
            raise AttributeError(name)
        return getattr(self.bound, name)

    def __repr__(self) -> str:
        return f"RunnableBinding(bound={self.bound!r}, kwargs={self.kwargs!r})"


def coerce_to_runnable(thing: RunnableLike) -> Runnable[Any, Any]:
    """Wrap callables as RunnableLambda and mappings as RunnableParallel."""
    if isinstance(thing, Runnable):
        return thing
    if isinstance(thing, Mapping):
        return RunnableParallel(thing)
    if callable(thing):
        return RunnableLambda(thing)
    raise TypeError(f"Expected a Runnable, callable or mapping, got {type(thing).__name__}")
