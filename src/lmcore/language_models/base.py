"""Shared invocation engine for chat and text-completion models.

Every call follows the same path per prompt:

1. Normalize the input into a PromptValue
2. Start one callback run per prompt
3. On a cache hit, replay the cached tokens and finish the run
4. On a miss, call the provider through the AsyncCaller (concurrency limit,
   retries, timeout, abort signal), store the candidates, finish the run
5. On failure, emit the run's error event and re-raise; nothing is cached

Subclasses provide the provider-facing half: how runs start (chat vs text)
and how a live generation is produced.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ..cache import BaseCache, get_cache, make_cache_key
from ..callbacks.manager import CallbackManager, CallbackManagerForLLMRun
from ..config import get_settings
from ..messages import BaseMessage, MessageLike, coerce_message_like, content_text
from ..outputs import Generation, GenerationResult, LLMResult
from ..prompt_values import ChatPromptValue, PromptValue, StringPromptValue
from ..runnables.base import Runnable
from ..runnables.config import CallOptions, OptionsLike, ensure_options
from ..runtime.caller import AsyncCaller
from .tokens import count_tokens

if TYPE_CHECKING:
    from ..messages import MessageContent

LanguageModelInput = Union[PromptValue, str, BaseMessage, Sequence[MessageLike]]

# Per-generation info key holding the token boundaries of a streamed live call
STREAM_TOKENS_KEY = "stream_tokens"


def _default_verbose() -> bool:
    return get_settings().verbose


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, type):
        return value.__name__
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _serialize_value(value: Any) -> str:
    return orjson.dumps(value, default=_json_default, option=orjson.OPT_SORT_KEYS).decode()


class BaseLanguageModel(BaseModel, Runnable, ABC):
    """Base for all language models.

    Attributes:
        cache: True for the process-wide cache, a BaseCache instance for a
            specific one, False to disable; None follows LMCORE_CACHE_ENABLED_BY_DEFAULT
        callbacks: Handlers attached to every call of this model (not inherited by child runs)
        tags / metadata: Attached to every callback event of this model's runs
        verbose: Log run lifecycle events through LoggingCallbackHandler
        max_concurrency / max_retries: AsyncCaller limits (None = settings default)
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    call_keys: ClassVar[tuple[str, ...]] = ("stop", "timeout", "signal", "tags", "metadata", "callbacks")

    name: str | None = None
    cache: BaseCache | bool | None = Field(default=None, exclude=True)
    callbacks: Any = Field(default=None, exclude=True)
    tags: list[str] | None = Field(default=None, exclude=True)
    metadata: dict[str, Any] | None = Field(default=None, exclude=True)
    verbose: bool = Field(default_factory=_default_verbose, exclude=True)
    max_concurrency: int | None = Field(default=None, ge=1, exclude=True)
    max_retries: int | None = Field(default=None, ge=0, exclude=True)

    _caller: AsyncCaller = PrivateAttr()

    def model_post_init(self, __context: Any) -> None:
        self._caller = AsyncCaller(max_concurrency=self.max_concurrency, max_retries=self.max_retries)

    @property
    def caller(self) -> AsyncCaller:
        return self._caller

    # ─────────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────────

    @property
    @abstractmethod
    def _llm_type(self) -> str:
        """Provider/model family tag, e.g. "openai-chat"."""

    @property
    @abstractmethod
    def _model_type(self) -> str: ...

    @property
    def _identifying_params(self) -> dict[str, Any]:
        """Parameters that determine this model's outputs (model name, temperature, ...)."""
        return {}

    def serialize(self) -> dict[str, Any]:
        return {**self._identifying_params, "_type": self._llm_type, "_model": self._model_type}

    def _serialized(self) -> dict[str, Any]:
        return {**self.serialize(), "name": self.get_name()}

    def llm_string(self, options: OptionsLike = None) -> str:
        """Fingerprint of the model configuration and output-affecting call options.

        Entries are rendered as `key:json` and sorted, so insertion order does
        not matter while value formatting does. Runtime-only options (callbacks,
        signal, tags, metadata, run_name, timeout) do not contribute.
        """
        params = {**self._identifying_params, **ensure_options(options).cache_params()}
        params["_type"] = self._llm_type
        params["_model"] = self._model_type
        return ",".join(sorted(f"{k}:{_serialize_value(v)}" for k, v in params.items() if v is not None))

    def invocation_params(self, options: OptionsLike = None) -> dict[str, Any]:
        return {**self._identifying_params, **ensure_options(options).cache_params()}

    # ─────────────────────────────────────────────────────────────────
    # Input / tokens
    # ─────────────────────────────────────────────────────────────────

    def _convert_input(self, input: LanguageModelInput) -> PromptValue:
        if isinstance(input, PromptValue):
            return input
        if isinstance(input, str):
            return StringPromptValue(text=input)
        if isinstance(input, BaseMessage):
            return ChatPromptValue(messages=[input])
        if isinstance(input, Sequence):
            return ChatPromptValue(messages=[coerce_message_like(m) for m in input])
        raise ValueError(
            f"Invalid input type {type(input).__name__}. Must be a PromptValue, str, or list of message-likes."
        )

    @property
    def _token_model_name(self) -> str | None:
        return getattr(self, "model_name", None)

    def get_num_tokens(self, content: MessageContent) -> int:
        """Best-effort token count; never raises (see tokens.count_tokens)."""
        text = content if isinstance(content, str) else content_text(content)
        return count_tokens(text, self._token_model_name)

    def get_num_tokens_from_messages(self, messages: Sequence[MessageLike]) -> int:
        return sum(self.get_num_tokens(coerce_message_like(m).content) for m in messages)

    # ─────────────────────────────────────────────────────────────────
    # Invocation engine
    # ─────────────────────────────────────────────────────────────────

    def _resolve_cache(self) -> BaseCache | None:
        match self.cache:
            case BaseCache():
                return self.cache
            case True:
                return get_cache()
            case False:
                return None
            case _:
                return get_cache() if get_settings().cache.enabled_by_default else None

    def _configure_callbacks(self, options: CallOptions) -> CallbackManager:
        return CallbackManager.configure(
            options.callbacks,
            self.callbacks,
            self.verbose,
            options.tags,
            self.tags,
            options.metadata,
            self.metadata,
        )

    @abstractmethod
    async def _start_runs(
        self, manager: CallbackManager, prompts: list[PromptValue], options: CallOptions,
    ) -> list[CallbackManagerForLLMRun]:
        """Emit the start event for each prompt and return their run managers."""

    @abstractmethod
    async def _generate_live(
        self, prompt: PromptValue, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> GenerationResult:
        """Produce candidates for one prompt from the provider (one attempt)."""

    def _replay_chunk(self, token: str) -> Any:
        """Chunk object passed alongside a replayed token."""
        return None

    async def agenerate_prompt(self, prompts: Sequence[PromptValue], options: OptionsLike = None) -> LLMResult:
        """Generate candidates for each prompt; one callback run per prompt."""
        opts = ensure_options(options)
        if opts.signal is not None:
            opts.signal.throw_if_aborted()
        prompt_list = list(prompts)
        run_managers = await self._start_runs(self._configure_callbacks(opts), prompt_list, opts)
        cache = self._resolve_cache()
        llm_string = self.llm_string(opts) if cache is not None else ""

        outcomes = await asyncio.gather(
            *(self._generate_one(p, opts, rm, cache, llm_string) for p, rm in zip(prompt_list, run_managers)),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return LLMResult(
            generations=[o.generations for o in outcomes],  # type: ignore[union-attr]
            llm_output=_combine_llm_outputs([o.llm_output for o in outcomes]),  # type: ignore[union-attr]
            run_ids=[str(rm.run_id) for rm in run_managers],
        )

    async def _generate_one(
        self,
        prompt: PromptValue,
        options: CallOptions,
        run_manager: CallbackManagerForLLMRun,
        cache: BaseCache | None,
        llm_string: str,
    ) -> GenerationResult:
        key = make_cache_key(prompt.to_string(), llm_string) if cache is not None else ""
        try:
            if cache is not None and (cached := await cache.alookup_all(key)):
                return await self._replay(cached, run_manager)
            result = await self._caller.call_with_options(options, self._attempt, prompt, options, run_manager)
            if cache is not None:
                await cache.aupdate_all(key, _with_stream_tokens(result.generations, result.tokens))
        except BaseException as e:
            if not run_manager.finished:
                await run_manager.on_llm_error(e)
            raise
        await run_manager.on_llm_end(LLMResult(generations=[result.result.generations], llm_output=result.result.llm_output))
        return result.result

    async def _attempt(
        self, prompt: PromptValue, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> _LiveResult:
        first_token = len(run_manager.tokens)
        result = await self._generate_live(prompt, options, run_manager)
        return _LiveResult(result, run_manager.tokens[first_token:])

    async def _replay(self, cached: list[Generation], run_manager: CallbackManagerForLLMRun) -> GenerationResult:
        """Re-emit the tokens of cached candidates and finish the run.

        A single candidate cached from a streamed call replays its original
        token boundaries; otherwise each candidate's text is one token.
        """
        generations = []
        for gen in cached:
            tokens = replay_tokens(gen) if len(cached) == 1 else [gen.text]
            for token in tokens:
                if token:
                    await run_manager.on_llm_new_token(token, chunk=self._replay_chunk(token))
            generations.append(strip_replay_info(gen))
        result = GenerationResult(generations=generations)
        await run_manager.on_llm_end(LLMResult(generations=[generations], llm_output={"cached": True}))
        return result

    # ─────────────────────────────────────────────────────────────────
    # Streaming engine
    # ─────────────────────────────────────────────────────────────────

    @property
    def _streams(self) -> bool:
        """Whether the provider produces incremental output."""
        return False

    def _stream_live(
        self, prompt: PromptValue, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> AsyncIterator[Any]:
        """Provider chunks for one prompt (GenerationChunk or ChatGenerationChunk)."""
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")

    @abstractmethod
    def _replay_stream(self, generation: Generation) -> list[Any]:
        """Chunks that re-create a cached generation."""

    @abstractmethod
    def _finalize_stream(self, final: Any) -> Generation:
        """Turn the sum of all streamed chunks into the stored generation."""

    async def _astream_chunks(self, input: LanguageModelInput, options: OptionsLike) -> AsyncIterator[Any]:
        """Stream provider chunks for one input through the cache and callbacks.

        A cache hit yields the replayed chunks. A miss stores the aggregated
        generation once the stream completes; an aborted or failed stream
        stores nothing.
        """
        opts = ensure_options(options)
        if opts.signal is not None:
            opts.signal.throw_if_aborted()
        prompt = self._convert_input(input)
        [run_manager] = await self._start_runs(self._configure_callbacks(opts), [prompt], opts)
        cache = self._resolve_cache()
        key = make_cache_key(prompt.to_string(), self.llm_string(opts)) if cache is not None else ""
        llm_output: dict[str, Any] | None = None
        try:
            cached = await cache.alookup_all(key) if cache is not None else None
            if cached:
                for chunk in self._replay_stream(cached[0]):
                    await run_manager.on_llm_new_token(chunk.text, chunk=chunk)
                    yield chunk
                generation = strip_replay_info(cached[0])
                llm_output = {"cached": True}
            else:
                final = None
                async for chunk in self._caller.stream_with_options(opts, self._stream_live, prompt, opts, run_manager):
                    await run_manager.on_llm_new_token(chunk.text, chunk=chunk)
                    final = chunk if final is None else final + chunk
                    yield chunk
                if final is None:
                    raise ValueError("No generations found in stream.")
                generation = self._finalize_stream(final)
                if cache is not None:
                    await cache.aupdate_all(key, _with_stream_tokens([generation], run_manager.tokens))
        except BaseException as e:
            if not run_manager.finished:
                await run_manager.on_llm_error(e)
            raise
        await run_manager.on_llm_end(LLMResult(generations=[[generation]], llm_output=llm_output))


class _LiveResult:
    __slots__ = ("result", "tokens")

    def __init__(self, result: GenerationResult, tokens: list[str]) -> None:
        self.result = result
        self.tokens = tokens

    @property
    def generations(self) -> list[Generation]:
        return self.result.generations


def replay_tokens(generation: Generation) -> list[str]:
    """Token sequence to re-emit for a cached generation (never empty)."""
    tokens = (generation.generation_info or {}).get(STREAM_TOKENS_KEY)
    return list(tokens) if tokens else [generation.text]


def strip_replay_info(generation: Generation) -> Generation:
    info = generation.generation_info
    if not info or STREAM_TOKENS_KEY not in info:
        return generation
    rest = {k: v for k, v in info.items() if k != STREAM_TOKENS_KEY}
    return generation.model_copy(update={"generation_info": rest or None})


def _with_stream_tokens(generations: list[Generation], tokens: list[str]) -> list[Generation]:
    """Attach streamed token boundaries to a single candidate whose text they spell."""
    if len(generations) != 1 or not tokens or "".join(tokens) != generations[0].text:
        return list(generations)
    gen = generations[0]
    return [gen.model_copy(update={"generation_info": {**(gen.generation_info or {}), STREAM_TOKENS_KEY: list(tokens)}})]


def _combine_llm_outputs(outputs: list[dict[str, Any] | None]) -> dict[str, Any] | None:
    """Sum token usage across prompts; other keys come from the first output that has them."""
    present = [o for o in outputs if o]
    if not present:
        return None
    combined: dict[str, Any] = {}
    usage: dict[str, int] = {}
    for output in present:
        for key, value in output.items():
            if key == "token_usage" and isinstance(value, dict):
                for name, count in value.items():
                    if isinstance(count, int):
                        usage[name] = usage.get(name, 0) + count
            else:
                combined.setdefault(key, value)
    if usage:
        combined["token_usage"] = usage
    return combined
