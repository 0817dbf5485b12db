"""Tests for text-completion models."""

from __future__ import annotations

from typing import Any

import pytest

from lmcore.cache import InMemoryCache
from lmcore.callbacks.manager import CallbackManagerForLLMRun
from lmcore.language_models import LLM
from lmcore.messages import HumanMessage, SystemMessage
from lmcore.runnables.config import CallOptions
from lmcore.testing import FakeListLLM, RecordingCallbackHandler


class EchoLLM(LLM):
    """Returns the prompt it was given, plus any bound suffix."""

    @property
    def _llm_type(self) -> str:
        return "echo"

    async def _acall(self, prompt: str, options: CallOptions, run_manager: CallbackManagerForLLMRun) -> str:
        return prompt + options.provider_kwargs().get("suffix", "")


@pytest.mark.asyncio
async def test_invoke_returns_text() -> None:
    llm = FakeListLLM(responses=["a b", "c"])

    assert await llm.ainvoke("hi") == "a b"
    assert await llm.ainvoke("hi") == "c"


@pytest.mark.asyncio
async def test_stream_emits_words() -> None:
    llm = FakeListLLM(responses=["one two three"])
    handler = RecordingCallbackHandler()

    chunks = [c async for c in llm.astream("hi", {"callbacks": [handler]})]

    assert chunks == ["one ", "two ", "three"]
    assert handler.names()[0] == "on_llm_start"
    assert handler.tokens() == chunks


@pytest.mark.asyncio
async def test_cached_completion_replays_tokens() -> None:
    llm = FakeListLLM(responses=["a b", "c"], cache=InMemoryCache())
    live, cached = RecordingCallbackHandler(), RecordingCallbackHandler()

    await llm.ainvoke("hi", {"callbacks": [live]})
    result = await llm.ainvoke("hi", {"callbacks": [cached]})

    assert result == "a b"
    assert cached.tokens() == live.tokens() == ["a ", "b"]


@pytest.mark.asyncio
async def test_agenerate_one_run_per_prompt() -> None:
    handler = RecordingCallbackHandler()

    result = await EchoLLM().agenerate(["x", "y"], {"callbacks": [handler]})

    assert [g[0].text for g in result.generations] == ["x", "y"]
    assert handler.names().count("on_llm_start") == 2
    assert len(handler.run_ids()) == 2


@pytest.mark.asyncio
async def test_chat_input_is_rendered_as_text() -> None:
    handler = RecordingCallbackHandler()

    result = await EchoLLM().ainvoke([SystemMessage(content="rules"), HumanMessage(content="hi")], {"callbacks": [handler]})

    assert result == "System: rules\nHuman: hi"
    assert handler.events[0].payload == ["System: rules\nHuman: hi"]


@pytest.mark.asyncio
async def test_bound_provider_kwargs_reach_provider() -> None:
    assert await EchoLLM().bind(suffix="!").ainvoke("hi") == "hi!"


def test_non_streaming_llm_streams_once() -> None:
    assert list(EchoLLM().stream("hi")) == ["hi"]


def test_sync_generate() -> None:
    result = FakeListLLM(responses=["z"]).generate(["p"])

    assert result.generations[0][0].text == "z"


def test_serialized_identity() -> None:
    data: dict[str, Any] = FakeListLLM(responses=["r"]).serialize()

    assert data == {"responses": ["r"], "_type": "fake-list", "_model": "base_llm"}
