"""Base class for chat models.

Provider integrations subclass BaseChatModel and implement `_llm_type` plus
either `_agenerate` (one-shot) or `_astream` (incremental), or both. When only
`_astream` is implemented, one-shot calls aggregate the stream; each chunk is
dispatched as a new-token event either way.

Example:
    >>> class EchoChat(BaseChatModel):
    ...     @property
    ...     def _llm_type(self) -> str:
    ...         return "echo"
    ...     async def _astream(self, messages, options, run_manager):
    ...         for word in messages[-1].text.split():
    ...             yield ChatGenerationChunk(message=AIMessageChunk(content=word + " "))
    >>> EchoChat().invoke("hello there").content
    'hello there '
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from ..callbacks.manager import CallbackManager, CallbackManagerForLLMRun
from ..messages import AIMessage, AIMessageChunk, BaseMessage, MessageLike, coerce_message_like
from ..outputs import ChatGeneration, ChatGenerationChunk, Generation, GenerationResult, LLMResult
from ..prompt_values import ChatPromptValue, PromptValue
from ..runnables.config import CallOptions, OptionsLike
from ..runtime.interop import run_sync
from .base import BaseLanguageModel, LanguageModelInput, replay_tokens

if TYPE_CHECKING:
    from pydantic import BaseModel

    from ..runnables.base import Runnable
    from .structured import StructuredOutputRunnable


class BaseChatModel(BaseLanguageModel):
    """Base class for chat models: message lists in, AIMessage out."""

    @property
    def _model_type(self) -> str:
        return "base_chat_model"

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    async def ainvoke(self, input: LanguageModelInput, options: OptionsLike = None) -> AIMessage:
        result = await self.agenerate_prompt([self._convert_input(input)], options)
        generation = result.generations[0][0]
        if not isinstance(generation, ChatGeneration):
            raise TypeError(f"Expected a ChatGeneration, got {type(generation).__name__}")
        return generation.message  # type: ignore[return-value]

    async def astream(self, input: LanguageModelInput, options: OptionsLike = None) -> AsyncIterator[AIMessageChunk]:
        """Stream message chunks; models without `_astream` yield one chunk."""
        if not self._streams:
            yield message_to_chunk(await self.ainvoke(input, options))
            return
        async for chunk in self._astream_chunks(input, options):
            yield chunk.message

    async def agenerate(self, messages: Sequence[Sequence[MessageLike]], options: OptionsLike = None) -> LLMResult:
        """Generate for several conversations; one callback run each."""
        prompts = [ChatPromptValue(messages=[coerce_message_like(m) for m in conversation]) for conversation in messages]
        return await self.agenerate_prompt(prompts, options)

    def generate(self, messages: Sequence[Sequence[MessageLike]], options: OptionsLike = None) -> LLMResult:
        return run_sync(self.agenerate(messages, options))

    def bind_tools(
        self,
        tools: Sequence[Mapping[str, Any] | type[BaseModel] | Callable[..., Any]],
        *,
        tool_choice: str | None = None,
        **kwargs: Any,
    ) -> Runnable[LanguageModelInput, AIMessage]:
        """Bind tool definitions so the model can emit tool calls.

        Providers with native tool calling override this.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support tool calling")

    def with_structured_output(
        self,
        schema: Mapping[str, Any] | type[BaseModel] | None = None,
        *,
        name: str | None = None,
        method: str | None = None,
        include_raw: bool | None = None,
    ) -> StructuredOutputRunnable:
        """Return a runnable that produces values validated against `schema`.

        Args:
            schema: Pydantic model class or JSON-Schema mapping. A mapping with a
                "schema" key is read as the legacy options form
                `{"schema": ..., "name": ..., "method": ..., "include_raw": ...}`
            name: Tool name override (function_calling)
            method: "function_calling" (default) or "json_mode"
            include_raw: Return {"raw": AIMessage, "parsed": value} instead of the value

        Raises:
            ValueError: Legacy options mixed with keyword arguments, or an unknown method
        """
        from .structured import build_structured_output

        return build_structured_output(self, schema, name=name, method=method, include_raw=include_raw)

    # ─────────────────────────────────────────────────────────────────
    # Provider hooks
    # ─────────────────────────────────────────────────────────────────

    async def _agenerate(
        self, messages: list[BaseMessage], options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> GenerationResult:
        """Produce candidates for one conversation. Default: aggregate `_astream`."""
        if not self._streams:
            raise NotImplementedError(f"{type(self).__name__} must implement _agenerate or _astream")
        final: ChatGenerationChunk | None = None
        async for chunk in self._astream(messages, options, run_manager):
            await run_manager.on_llm_new_token(chunk.text, chunk=chunk)
            final = chunk if final is None else final + chunk
        if final is None:
            raise ValueError("No generations found in stream.")
        return GenerationResult(generations=[self._finalize_stream(final)])

    async def _astream(
        self, messages: list[BaseMessage], options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> AsyncIterator[ChatGenerationChunk]:
        """Yield chunks for one conversation. Token events are dispatched by the caller."""
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")
        yield  # pragma: no cover

    # ─────────────────────────────────────────────────────────────────
    # Engine hooks
    # ─────────────────────────────────────────────────────────────────

    @property
    def _streams(self) -> bool:
        return type(self)._astream is not BaseChatModel._astream

    async def _start_runs(
        self, manager: CallbackManager, prompts: list[PromptValue], options: CallOptions,
    ) -> list[CallbackManagerForLLMRun]:
        return await manager.on_chat_model_start(
            self._serialized(),
            [p.to_messages() for p in prompts],
            invocation_params=self.invocation_params(options),
            name=options.run_name,
        )

    async def _generate_live(
        self, prompt: PromptValue, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> GenerationResult:
        return await self._agenerate(prompt.to_messages(), options, run_manager)

    def _stream_live(
        self, prompt: PromptValue, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> AsyncIterator[ChatGenerationChunk]:
        return self._astream(prompt.to_messages(), options, run_manager)

    def _replay_chunk(self, token: str) -> ChatGenerationChunk:
        return ChatGenerationChunk(message=AIMessageChunk(content=token))

    def _replay_stream(self, generation: Generation) -> list[ChatGenerationChunk]:
        """Content chunks per cached token; the last one also carries tool calls and metadata."""
        tokens = replay_tokens(generation)
        chunks = [self._replay_chunk(token) for token in tokens[:-1]]
        message = generation.message if isinstance(generation, ChatGeneration) else AIMessage(content=generation.text)
        last = message_to_chunk(message).model_copy(update={"content": tokens[-1]})
        chunks.append(ChatGenerationChunk(message=last))
        return chunks

    def _finalize_stream(self, final: ChatGenerationChunk) -> ChatGeneration:
        return ChatGeneration(message=final.message.to_message(), generation_info=final.generation_info)


class SimpleChatModel(BaseChatModel):
    """Chat model whose provider call returns plain text.

    Subclasses implement `_acall(messages, options, run_manager) -> str`.
    """

    async def _agenerate(
        self, messages: list[BaseMessage], options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> GenerationResult:
        text = await self._acall(messages, options, run_manager)
        return GenerationResult(generations=[ChatGeneration(message=AIMessage(content=text))])

    async def _acall(self, messages: list[BaseMessage], options: CallOptions, run_manager: CallbackManagerForLLMRun) -> str:
        raise NotImplementedError


def message_to_chunk(message: BaseMessage) -> AIMessageChunk:
    """Re-express a finished message as a single stream chunk."""
    if isinstance(message, AIMessageChunk):
        return message
    fields = {
        "content": message.content,
        "name": message.name,
        "id": message.id,
        "additional_kwargs": message.additional_kwargs,
        "response_metadata": message.response_metadata,
    }
    if isinstance(message, AIMessage):
        fields |= {
            "tool_calls": message.tool_calls,
            "invalid_tool_calls": message.invalid_tool_calls,
            "usage_metadata": message.usage_metadata,
        }
    return AIMessageChunk(**fields)

