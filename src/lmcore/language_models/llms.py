"""Base class for text-completion models: string prompt in, string out."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence

from ..callbacks.manager import CallbackManager, CallbackManagerForLLMRun
from ..outputs import Generation, GenerationChunk, GenerationResult, LLMResult
from ..prompt_values import PromptValue, StringPromptValue
from ..runnables.config import CallOptions, OptionsLike
from ..runtime.interop import run_sync
from .base import BaseLanguageModel, LanguageModelInput, replay_tokens


class BaseLLM(BaseLanguageModel):
    """Base class for completion models.

    Provider integrations implement `_llm_type` and `_agenerate` and/or
    `_astream`, each handling one prompt string. Chat-style inputs are
    rendered to text (`Human: ...`) before reaching the provider.
    """

    @property
    def _model_type(self) -> str:
        return "base_llm"

    async def ainvoke(self, input: LanguageModelInput, options: OptionsLike = None) -> str:
        result = await self.agenerate_prompt([self._convert_input(input)], options)
        return result.generations[0][0].text

    async def astream(self, input: LanguageModelInput, options: OptionsLike = None) -> AsyncIterator[str]:
        if not self._streams:
            yield await self.ainvoke(input, options)
            return
        async for chunk in self._astream_chunks(input, options):
            yield chunk.text

    async def agenerate(self, prompts: Sequence[str], options: OptionsLike = None) -> LLMResult:
        return await self.agenerate_prompt([StringPromptValue(text=p) for p in prompts], options)

    def generate(self, prompts: Sequence[str], options: OptionsLike = None) -> LLMResult:
        return run_sync(self.agenerate(prompts, options))

    async def _agenerate(self, prompt: str, options: CallOptions, run_manager: CallbackManagerForLLMRun) -> GenerationResult:
        """Produce candidates for one prompt. Default: aggregate `_astream`."""
        if not self._streams:
            raise NotImplementedError(f"{type(self).__name__} must implement _agenerate or _astream")
        final: GenerationChunk | None = None
        async for chunk in self._astream(prompt, options, run_manager):
            await run_manager.on_llm_new_token(chunk.text, chunk=chunk)
            final = chunk if final is None else final + chunk
        if final is None:
            raise ValueError("No generations found in stream.")
        return GenerationResult(generations=[self._finalize_stream(final)])

    async def _astream(
        self, prompt: str, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> AsyncIterator[GenerationChunk]:
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")
        yield  # pragma: no cover

    @property
    def _streams(self) -> bool:
        return type(self)._astream is not BaseLLM._astream

    async def _start_runs(
        self, manager: CallbackManager, prompts: list[PromptValue], options: CallOptions,
    ) -> list[CallbackManagerForLLMRun]:
        return await manager.on_llm_start(
            self._serialized(),
            [p.to_string() for p in prompts],
            invocation_params=self.invocation_params(options),
            name=options.run_name,
        )

    async def _generate_live(
        self, prompt: PromptValue, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> GenerationResult:
        return await self._agenerate(prompt.to_string(), options, run_manager)

    def _stream_live(
        self, prompt: PromptValue, options: CallOptions, run_manager: CallbackManagerForLLMRun,
    ) -> AsyncIterator[GenerationChunk]:
        return self._astream(prompt.to_string(), options, run_manager)

    def _replay_chunk(self, token: str) -> GenerationChunk:
        return GenerationChunk(text=token)

    def _replay_stream(self, generation: Generation) -> list[GenerationChunk]:
        return [self._replay_chunk(token) for token in replay_tokens(generation)]

    def _finalize_stream(self, final: GenerationChunk) -> Generation:
        return Generation(text=final.text, generation_info=final.generation_info)


class LLM(BaseLLM):
    """Completion model whose provider call returns plain text.

    Subclasses implement `_acall(prompt, options, run_manager) -> str`.
    """

    async def _agenerate(self, prompt: str, options: CallOptions, run_manager: CallbackManagerForLLMRun) -> GenerationResult:
        return GenerationResult(generations=[Generation(text=await self._acall(prompt, options, run_manager))])

    async def _acall(self, prompt: str, options: CallOptions, run_manager: CallbackManagerForLLMRun) -> str:
        raise NotImplementedError
