"""Tests for the chat model invocation engine: cache, callbacks, retries, cancellation."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from lmcore.cache import InMemoryCache
from lmcore.callbacks import BaseCallbackHandler
from lmcore.errors import CancelledInvocationError, InvocationTimeoutError, ProviderError
from lmcore.language_models import tokens
from lmcore.messages import AIMessage, HumanMessage, SystemMessage
from lmcore.runtime import AbortController, AbortSignal
from lmcore.testing import (
    FailingChatModel,
    FakeChatModel,
    FakeListChatModel,
    FakeMultiCandidateChatModel,
    FakeStreamingChatModel,
    RecordingCallbackHandler,
)


class ExplodingTokenHandler(BaseCallbackHandler):
    def __init__(self, *, raise_error: bool = False) -> None:
        self.raise_error = raise_error

    def on_llm_new_token(self, token: str, **kwargs: Any) -> None:
        raise RuntimeError("boom")


class PromptCollector(BaseCallbackHandler):
    def __init__(self) -> None:
        self.prompts: list[str] = []

    def on_llm_start(self, serialized: dict[str, Any], prompts: list[str], **kwargs: Any) -> None:
        self.prompts.extend(prompts)


# ─────────────────────────────────────────────────────────────────────────────
# Cache
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cache_hit_replays_identical_events() -> None:
    """A cached call emits the same tokens as the live call it replaces."""
    model = FakeListChatModel(responses=["Hello there"], cache=InMemoryCache())
    live, cached = RecordingCallbackHandler(), RecordingCallbackHandler()

    first = await model.ainvoke("hi", {"callbacks": [live]})
    second = await model.ainvoke("hi", {"callbacks": [cached]})

    assert first == second
    assert second.content == "Hello there"
    assert model.calls == 1
    assert cached.tokens() == live.tokens()
    assert "".join(cached.tokens()) == "Hello there"
    assert cached.names() == ["on_chat_model_start", *["on_llm_new_token"] * 11, "on_llm_end"]
    assert cached.events[-1].payload.llm_output == {"cached": True}


@pytest.mark.asyncio
async def test_global_cache_used_when_enabled() -> None:
    model = FakeListChatModel(responses=["a", "b"], cache=True)

    assert (await model.ainvoke("hi")).content == "a"
    assert (await model.ainvoke("hi")).content == "a"
    assert model.calls == 1


@pytest.mark.asyncio
async def test_cache_default_follows_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    from lmcore.config import clear_settings_cache

    uncached = FakeListChatModel(responses=["a", "b"])
    assert (await uncached.ainvoke("hi")).content == "a"
    assert (await uncached.ainvoke("hi")).content == "b"

    monkeypatch.setenv("LMCORE_CACHE_ENABLED_BY_DEFAULT", "true")
    clear_settings_cache()
    cached = FakeListChatModel(responses=["a", "b"])
    assert (await cached.ainvoke("hi")).content == "a"
    assert (await cached.ainvoke("hi")).content == "a"


@pytest.mark.asyncio
async def test_cache_disabled_explicitly(monkeypatch: pytest.MonkeyPatch) -> None:
    from lmcore.config import clear_settings_cache

    monkeypatch.setenv("LMCORE_CACHE_ENABLED_BY_DEFAULT", "true")
    clear_settings_cache()
    model = FakeListChatModel(responses=["a", "b"], cache=False)

    assert (await model.ainvoke("hi")).content == "a"
    assert (await model.ainvoke("hi")).content == "b"


def test_llm_string_is_deterministic() -> None:
    model = FakeListChatModel(responses=["x"])

    assert model.llm_string({"temperature": 0.5, "top_p": 1}) == model.llm_string({"top_p": 1, "temperature": 0.5})
    assert model.llm_string({"temperature": 0.5}) != model.llm_string({"temperature": "0.5"})
    assert model.llm_string({"tags": ["x"], "timeout": 3, "run_name": "n"}) == model.llm_string()
    assert model.llm_string({"stop": ["\n"]}) != model.llm_string()
    assert "_type:" in model.llm_string()


@pytest.mark.asyncio
async def test_bound_options_change_cache_key() -> None:
    model = FakeListChatModel(responses=["x", "y"], cache=InMemoryCache())

    assert (await model.ainvoke("hi")).content == "x"
    assert (await model.bind(stop=["\n"]).ainvoke("hi")).content == "y"
    assert (await model.ainvoke("hi")).content == "x"
    assert model.calls == 2


@pytest.mark.asyncio
async def test_runtime_options_share_cache_entry() -> None:
    model = FakeListChatModel(responses=["x", "y"], cache=InMemoryCache())

    await model.ainvoke("hi", {"tags": ["one"], "timeout": 5})
    result = await model.ainvoke("hi", {"tags": ["two"], "metadata": {"user": 1}})

    assert result.content == "x"
    assert model.calls == 1


@pytest.mark.asyncio
async def test_multi_candidate_replay_uses_each_text() -> None:
    model = FakeMultiCandidateChatModel(candidates=["a", "b"], cache=InMemoryCache())
    handler = RecordingCallbackHandler()

    first = await model.agenerate([["hi"]])
    second = await model.agenerate([["hi"]], {"callbacks": [handler]})

    assert [g.text for g in second.generations[0]] == ["a", "b"]
    assert second.generations == first.generations
    assert handler.tokens() == ["a", "b"]
    assert model.calls == 1


# ─────────────────────────────────────────────────────────────────────────────
# Errors and retries
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_error_emits_error_event_and_is_not_cached() -> None:
    cache = InMemoryCache()
    model = FailingChatModel(errors=[ValueError("bad request")], cache=cache)
    handler = RecordingCallbackHandler()

    with pytest.raises(ValueError, match="bad request"):
        await model.ainvoke("hi", {"callbacks": [handler]})

    assert handler.names() == ["on_chat_model_start", "on_llm_error"]
    assert cache.size == 0


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    model = FailingChatModel(
        errors=[ProviderError.from_status(429), ProviderError.from_status(503)], max_retries=3,
    )
    handler = RecordingCallbackHandler()

    result = await model.ainvoke("hi", {"callbacks": [handler]})

    assert result.content == "ok"
    assert model.attempts == 3
    assert handler.names() == ["on_chat_model_start", "on_llm_end"]


@pytest.mark.asyncio
async def test_retry_exhaustion_raises_last_error() -> None:
    errors = [ProviderError.from_status(503, f"attempt {i}") for i in range(4)]
    model = FailingChatModel(errors=errors, max_retries=1)

    with pytest.raises(ProviderError) as exc_info:
        await model.ainvoke("hi")

    assert exc_info.value is errors[1]
    assert model.attempts == 2


@pytest.mark.asyncio
async def test_handler_errors_do_not_fail_the_call(caplog: pytest.LogCaptureFixture) -> None:
    recorder = RecordingCallbackHandler()
    model = FakeChatModel(callbacks=[ExplodingTokenHandler(), recorder])

    with caplog.at_level("WARNING", logger="lmcore.callbacks"):
        result = await model.ainvoke("hi")

    assert result.content == "hi"
    assert recorder.names() == ["on_chat_model_start", "on_llm_new_token", "on_llm_end"]
    assert any("Error in ExplodingTokenHandler.on_llm_new_token" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_raising_handler_fails_the_call() -> None:
    recorder = RecordingCallbackHandler()
    model = FakeChatModel(max_retries=0)

    with pytest.raises(RuntimeError, match="boom"):
        await model.ainvoke("hi", {"callbacks": [ExplodingTokenHandler(raise_error=True), recorder]})

    assert recorder.names() == ["on_chat_model_start", "on_llm_error"]


# ─────────────────────────────────────────────────────────────────────────────
# Cancellation and timeout
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_abort_cancels_call() -> None:
    model = FakeListChatModel(responses=["a slow response"], sleep=0.05)
    handler = RecordingCallbackHandler()
    controller = AbortController()

    task = asyncio.create_task(model.ainvoke("hi", {"signal": controller.signal, "callbacks": [handler]}))
    await asyncio.sleep(0.01)
    controller.abort("user stop")

    with pytest.raises(CancelledInvocationError):
        await task
    assert handler.names()[-1] == "on_llm_error"


@pytest.mark.asyncio
async def test_pre_aborted_signal_skips_provider() -> None:
    model = FakeListChatModel(responses=["x"])
    handler = RecordingCallbackHandler()

    with pytest.raises(CancelledInvocationError):
        await model.ainvoke("hi", {"signal": AbortSignal.aborted_with("early"), "callbacks": [handler]})

    assert model.calls == 0
    assert handler.events == []


@pytest.mark.asyncio
async def test_timeout() -> None:
    model = FakeListChatModel(responses=["slow"], sleep=0.05)

    with pytest.raises(InvocationTimeoutError):
        await model.ainvoke("hi", {"timeout": 0.01})


# ─────────────────────────────────────────────────────────────────────────────
# Streaming
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stream_yields_chunks_and_tokens() -> None:
    model = FakeStreamingChatModel()
    handler = RecordingCallbackHandler()

    chunks = [c.content async for c in model.astream("hi", {"callbacks": [handler]})]

    assert chunks == ["Hello", " ", "world"]
    assert handler.tokens() == chunks
    assert handler.names()[-1] == "on_llm_end"
    assert handler.events[-1].payload.generations[0][0].text == "Hello world"


@pytest.mark.asyncio
async def test_stream_result_is_cached_with_token_boundaries() -> None:
    model = FakeStreamingChatModel(cache=InMemoryCache())
    await model.ainvoke("hi")

    replay = RecordingCallbackHandler()
    chunks = [c.content async for c in model.astream("hi", {"callbacks": [replay]})]

    assert chunks == ["Hello", " ", "world"]
    assert replay.tokens() == chunks
    assert replay.events[-1].payload.llm_output == {"cached": True}


@pytest.mark.asyncio
async def test_invoke_after_stream_hits_cache() -> None:
    model = FakeStreamingChatModel(cache=InMemoryCache())
    async for _ in model.astream("hi"):
        pass

    handler = RecordingCallbackHandler()
    result = await model.ainvoke("hi", {"callbacks": [handler]})

    assert result.content == "Hello world"
    assert result.response_metadata == {}
    assert handler.tokens() == ["Hello", " ", "world"]
    assert handler.events[-1].payload.llm_output == {"cached": True}


@pytest.mark.asyncio
async def test_failed_stream_is_not_cached() -> None:
    cache = InMemoryCache()
    model = FakeStreamingChatModel(fail_after=1, cache=cache)
    handler = RecordingCallbackHandler()
    received: list[str] = []

    with pytest.raises(RuntimeError, match="stream interrupted"):
        async for chunk in model.astream("hi", {"callbacks": [handler]}):
            received.append(chunk.content)

    assert received == ["Hello"]
    assert handler.names() == ["on_chat_model_start", "on_llm_new_token", "on_llm_error"]
    assert cache.size == 0


@pytest.mark.asyncio
async def test_non_streaming_model_yields_single_chunk() -> None:
    chunks = [c async for c in FakeChatModel().astream("hi")]

    assert len(chunks) == 1
    assert chunks[0].content == "hi"


# ─────────────────────────────────────────────────────────────────────────────
# Callbacks and batching
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_text_only_handler_receives_rendered_messages() -> None:
    handler = PromptCollector()

    await FakeChatModel().ainvoke([SystemMessage(content="be brief"), HumanMessage(content="hi")], {"callbacks": [handler]})

    assert handler.prompts == ["System: be brief\nHuman: hi"]


@pytest.mark.asyncio
async def test_function_mapping_callbacks() -> None:
    tokens_seen: list[str] = []
    model = FakeChatModel()

    await model.ainvoke("hi", {"callbacks": [{"on_llm_new_token": lambda token, **kw: tokens_seen.append(token)}]})

    assert tokens_seen == ["hi"]


@pytest.mark.asyncio
async def test_model_and_call_callbacks_both_fire() -> None:
    model_level, call_level = RecordingCallbackHandler(), RecordingCallbackHandler()
    model = FakeChatModel(callbacks=[model_level], tags=["model"])

    await model.ainvoke("hi", {"callbacks": [call_level], "tags": ["call"]})

    assert model_level.names() == call_level.names()
    assert set(call_level.events[0].tags) == {"model", "call"}


@pytest.mark.asyncio
async def test_verbose_logs_run_lifecycle(log_entries: Any) -> None:
    await FakeChatModel(verbose=True).ainvoke("hi")

    events = [e.event for e in log_entries.entries if e.event.startswith("llm")]
    assert events == ["llm start", "llm end"]
    assert log_entries.entries[0].context["model"] == "fake"


@pytest.mark.asyncio
async def test_generate_sums_token_usage_across_prompts() -> None:
    model = FakeMultiCandidateChatModel(
        candidates=["a"], usage={"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3},
    )

    result = await model.agenerate([["x"], ["y"]])

    assert result.llm_output == {"token_usage": {"prompt_tokens": 2, "completion_tokens": 4, "total_tokens": 6}}
    assert len(result.run_ids) == 2
    assert len(set(result.run_ids)) == 2


@pytest.mark.asyncio
async def test_abatch_preserves_order() -> None:
    results = await FakeChatModel().abatch(["a", "b", "c"], {"max_concurrency": 1})

    assert [r.content for r in results] == ["a", "b", "c"]


def test_sync_entry_points() -> None:
    model = FakeChatModel()

    assert model.invoke("hi").content == "hi"
    assert [r.content for r in model.batch(["a", "b"])] == ["a", "b"]
    assert [c.content for c in FakeStreamingChatModel().stream("hi")] == ["Hello", " ", "world"]
    assert model.generate([["x"]]).generations[0][0].text == "x"


@pytest.mark.asyncio
async def test_sync_invoke_inside_running_loop() -> None:
    assert FakeChatModel().invoke("hi").content == "hi"
    assert [c.content for c in FakeStreamingChatModel().stream("hi")] == ["Hello", " ", "world"]


@pytest.mark.asyncio
async def test_input_coercion() -> None:
    model = FakeChatModel()

    assert (await model.ainvoke([("system", "a"), {"role": "user", "content": "b"}])).content == "a\nb"
    assert (await model.ainvoke(HumanMessage(content="c"))).content == "c"
    with pytest.raises(ValueError):
        await model.ainvoke(42)  # type: ignore[arg-type]


def test_ainvoke_returns_ai_message() -> None:
    assert isinstance(FakeChatModel().invoke("hi"), AIMessage)


# ─────────────────────────────────────────────────────────────────────────────
# Token counting
# ─────────────────────────────────────────────────────────────────────────────


class CharEncoding:
    def encode(self, text: str) -> list[str]:
        return list(text)


def test_get_num_tokens_ignores_non_text_parts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tokens, "_load_encoding", lambda name: CharEncoding())
    model = FakeChatModel()
    content = [{"type": "text", "text": "hello"}, {"type": "image_url", "image_url": {"url": "x"}}, " world"]

    assert model.get_num_tokens(content) == len("hello world")
    assert model.get_num_tokens_from_messages(["ab", ("ai", "cd")]) == 4
