"""Generation results produced by language models.

A model call yields an LLMResult holding, per prompt, the list of candidate
generations. Chunk variants are addable so that streams fold into the final
generation.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, model_validator

from .messages import AIMessageChunk, BaseMessage, TokenUsage, message_from_dict

__all__ = [
    "Generation",
    "GenerationChunk",
    "ChatGeneration",
    "ChatGenerationChunk",
    "GenerationResult",
    "LLMResult",
    "TokenUsage",
    "generation_from_dict",
]


class Generation(BaseModel):
    """One text candidate returned for a prompt."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    generation_info: dict[str, Any] | None = None
    type: str = "Generation"


class GenerationChunk(Generation):
    """Streaming fragment of a text generation."""

    type: str = "GenerationChunk"

    def __add__(self, other: GenerationChunk) -> GenerationChunk:
        if not isinstance(other, GenerationChunk):
            return NotImplemented
        return GenerationChunk(
            text=self.text + other.text,
            generation_info=_merge_info(self.generation_info, other.generation_info),
        )


class ChatGeneration(Generation):
    """One message candidate; `text` mirrors the message text."""

    message: SerializeAsAny[BaseMessage]
    type: str = "ChatGeneration"

    @model_validator(mode="before")
    @classmethod
    def _set_text(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("message"), BaseMessage):
            data = {**data, "text": data["message"].text}
        return data


class ChatGenerationChunk(ChatGeneration):
    """Streaming fragment of a chat generation."""

    message: AIMessageChunk
    type: str = "ChatGenerationChunk"

    def __add__(self, other: ChatGenerationChunk) -> ChatGenerationChunk:
        if not isinstance(other, ChatGenerationChunk):
            return NotImplemented
        return ChatGenerationChunk(
            message=self.message + other.message,
            generation_info=_merge_info(self.generation_info, other.generation_info),
        )


class GenerationResult(BaseModel):
    """Candidates a provider produced for one prompt, plus provider output such as token usage."""

    model_config = ConfigDict(frozen=True)

    generations: list[SerializeAsAny[Generation]]
    llm_output: dict[str, Any] | None = None


class LLMResult(BaseModel):
    """Result of a batch call: one list of candidates per input prompt."""

    model_config = ConfigDict(frozen=True)

    generations: list[list[SerializeAsAny[Generation]]]
    llm_output: dict[str, Any] | None = None
    run_ids: list[str] = Field(default_factory=list)

    def flatten(self) -> list[LLMResult]:
        """Split into one single-prompt result per prompt.

        Token usage stays on the first result only so that summing the
        flattened results does not double count.
        """
        results = []
        for i, gen_list in enumerate(self.generations):
            output = self.llm_output if i == 0 else ({**self.llm_output, "token_usage": {}} if self.llm_output else None)
            results.append(LLMResult(generations=[gen_list], llm_output=output))
        return results


def generation_from_dict(data: dict[str, Any]) -> Generation:
    """Rebuild a generation from its `model_dump()` form (used by networked caches)."""
    kind = data.get("type", "Generation")
    if kind in ("ChatGeneration", "ChatGenerationChunk"):
        message = message_from_dict(data["message"])
        if kind == "ChatGenerationChunk" and isinstance(message, AIMessageChunk):
            return ChatGenerationChunk(message=message, generation_info=data.get("generation_info"))
        if isinstance(message, AIMessageChunk):
            message = message.to_message()
        return ChatGeneration(message=message, generation_info=data.get("generation_info"))
    if kind == "GenerationChunk":
        return GenerationChunk(text=data.get("text", ""), generation_info=data.get("generation_info"))
    return Generation(text=data.get("text", ""), generation_info=data.get("generation_info"))


def _merge_info(left: dict[str, Any] | None, right: dict[str, Any] | None) -> dict[str, Any] | None:
    if left is None and right is None:
        return None
    return {**(left or {}), **(right or {})}

