"""Tests for messages, prompt values and generation outputs."""

from __future__ import annotations

import pytest

from lmcore.messages import (
    AIMessage,
    AIMessageChunk,
    HumanMessage,
    SystemMessage,
    TokenUsage,
    ToolCallChunk,
    ToolMessage,
    coerce_message_like,
    get_buffer_string,
    message_from_dict,
)
from lmcore.outputs import (
    ChatGeneration,
    ChatGenerationChunk,
    Generation,
    GenerationChunk,
    LLMResult,
    generation_from_dict,
)
from lmcore.prompt_values import ChatPromptValue, StringPromptValue


@pytest.mark.parametrize(
    ("value", "cls", "text"),
    [
        ("hi", HumanMessage, "hi"),
        (("system", "rules"), SystemMessage, "rules"),
        (("assistant", "sure"), AIMessage, "sure"),
        ({"role": "user", "content": "q"}, HumanMessage, "q"),
        ({"role": "tool", "content": "42", "tool_call_id": "c1"}, ToolMessage, "42"),
    ],
)
def test_coerce_message_like(value: object, cls: type, text: str) -> None:
    message = coerce_message_like(value)  # type: ignore[arg-type]

    assert isinstance(message, cls)
    assert message.text == text


def test_coerce_rejects_unknown_role() -> None:
    with pytest.raises(ValueError, match="wizard"):
        coerce_message_like(("wizard", "x"))
    with pytest.raises(ValueError):
        coerce_message_like({"content": "no role"})


def test_multimodal_text_drops_non_text_parts() -> None:
    message = HumanMessage(content=["look: ", {"type": "image_url", "image_url": {"url": "u"}}, {"type": "text", "text": "cat"}])

    assert message.text == "look: cat"


def test_buffer_string() -> None:
    messages = [SystemMessage(content="s"), HumanMessage(content="h"), AIMessage(content="a")]

    assert get_buffer_string(messages) == "System: s\nHuman: h\nAI: a"


def test_chunks_fold_into_message() -> None:
    chunks = [
        AIMessageChunk(content="", tool_call_chunks=[ToolCallChunk(name="get", args='{"ci', id="c1", index=0)]),
        AIMessageChunk(content="", tool_call_chunks=[ToolCallChunk(args='ty": "Oslo"}', index=0)]),
        AIMessageChunk(content="done", usage_metadata=TokenUsage(prompt_tokens=3, completion_tokens=4)),
    ]

    total = chunks[0] + chunks[1] + chunks[2]
    message = total.to_message()

    assert total.content == "done"
    assert message.tool_calls[0].name == "get"
    assert message.tool_calls[0].args == {"city": "Oslo"}
    assert message.tool_calls[0].id == "c1"
    assert message.usage_metadata.total_tokens == 7


def test_unparseable_tool_args_become_invalid_calls() -> None:
    chunk = AIMessageChunk(content="", tool_call_chunks=[ToolCallChunk(name="get", args="{oops", index=0)])

    message = chunk.to_message()

    assert message.tool_calls == []
    assert message.invalid_tool_calls[0].name == "get"
    assert message.invalid_tool_calls[0].args == "{oops"


def test_multimodal_chunks_merge_as_lists() -> None:
    merged = AIMessageChunk(content="a") + AIMessageChunk(content=[{"type": "text", "text": "b"}])

    assert merged.content == ["a", {"type": "text", "text": "b"}]
    assert merged.text == "ab"


def test_message_round_trip_through_dict() -> None:
    message = AIMessage(content="hi", response_metadata={"finish_reason": "stop"})

    assert message_from_dict(message.model_dump()) == message
    with pytest.raises(ValueError):
        message_from_dict({"type": "martian"})


def test_prompt_values() -> None:
    assert StringPromptValue(text="x").to_messages() == [HumanMessage(content="x")]
    chat = ChatPromptValue(messages=[HumanMessage(content="a"), AIMessage(content="b")])
    assert chat.to_string() == "Human: a\nAI: b"


def test_generation_chunks_add() -> None:
    text = GenerationChunk(text="a", generation_info={"x": 1}) + GenerationChunk(text="b")
    chat = ChatGenerationChunk(message=AIMessageChunk(content="a")) + ChatGenerationChunk(message=AIMessageChunk(content="b"))

    assert text.text == "ab"
    assert text.generation_info == {"x": 1}
    assert chat.text == "ab"


def test_generation_from_dict() -> None:
    chat = ChatGeneration(message=AIMessage(content="hi"), generation_info={"k": 1})

    restored = generation_from_dict(chat.model_dump())

    assert isinstance(restored, ChatGeneration)
    assert restored == chat
    assert generation_from_dict(Generation(text="t").model_dump()) == Generation(text="t")


def test_flatten_keeps_usage_on_first() -> None:
    result = LLMResult(
        generations=[[Generation(text="a")], [Generation(text="b")]],
        llm_output={"token_usage": {"total_tokens": 5}, "model": "m"},
    )

    first, second = result.flatten()

    assert first.llm_output["token_usage"] == {"total_tokens": 5}
    assert second.llm_output == {"token_usage": {}, "model": "m"}
    assert second.generations == [[Generation(text="b")]]
