"""Tests for callback dispatch, configuration and run lifecycle."""

from __future__ import annotations

import asyncio
from typing import Any
from uuid import uuid4

import pytest

from lmcore.callbacks import (
    BaseCallbackHandler,
    CallbackManager,
    FunctionCallbackHandler,
    LoggingCallbackHandler,
)
from lmcore.messages import HumanMessage
from lmcore.outputs import Generation, LLMResult
from lmcore.testing import RecordingCallbackHandler

RESULT = LLMResult(generations=[[Generation(text="done")]])


class ExplodingHandler(BaseCallbackHandler):
    def __init__(self, *, raise_error: bool = False) -> None:
        self.raise_error = raise_error

    def on_llm_new_token(self, token: str, **kwargs: Any) -> None:
        raise RuntimeError("boom")


class TextOnlyHandler(BaseCallbackHandler):
    def __init__(self) -> None:
        self.prompts: list[str] = []

    def on_llm_start(self, serialized: dict[str, Any], prompts: list[str], **kwargs: Any) -> None:
        self.prompts.extend(prompts)


class AsyncHandler(BaseCallbackHandler):
    def __init__(self) -> None:
        self.tokens: list[str] = []

    async def on_llm_new_token(self, token: str, **kwargs: Any) -> None:
        await asyncio.sleep(0)
        self.tokens.append(token)


@pytest.mark.asyncio
async def test_events_reach_handlers_in_order() -> None:
    first, second = RecordingCallbackHandler(), RecordingCallbackHandler()
    manager = CallbackManager.configure([first, second])

    [run] = await manager.on_llm_start({"_type": "fake"}, ["prompt"])
    await run.on_llm_new_token("a")
    await run.on_llm_new_token("b")
    await run.on_llm_end(RESULT)

    expected = ["on_llm_start", "on_llm_new_token", "on_llm_new_token", "on_llm_end"]
    assert first.names() == expected
    assert second.names() == expected
    assert first.tokens() == ["a", "b"]
    assert run.tokens == ["a", "b"]


@pytest.mark.asyncio
async def test_one_run_per_prompt() -> None:
    handler = RecordingCallbackHandler()
    manager = CallbackManager.configure([handler])
    run_id = uuid4()

    runs = await manager.on_llm_start({}, ["a", "b"], run_id=run_id)

    assert [r.run_id for r in runs][0] == run_id
    assert len({r.run_id for r in runs}) == 2
    assert [e.payload for e in handler.events] == [["a"], ["b"]]


@pytest.mark.asyncio
async def test_handler_error_is_isolated(caplog: pytest.LogCaptureFixture) -> None:
    recorder = RecordingCallbackHandler()
    manager = CallbackManager.configure([ExplodingHandler(), recorder])

    [run] = await manager.on_llm_start({}, ["p"])
    with caplog.at_level("WARNING", logger="lmcore.callbacks"):
        await run.on_llm_new_token("a")
    await run.on_llm_end(RESULT)

    assert recorder.names() == ["on_llm_start", "on_llm_new_token", "on_llm_end"]
    assert any("ExplodingHandler.on_llm_new_token" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_raise_error_handler_propagates() -> None:
    manager = CallbackManager.configure([ExplodingHandler(raise_error=True)])
    [run] = await manager.on_llm_start({}, ["p"])

    with pytest.raises(RuntimeError, match="boom"):
        await run.on_llm_new_token("a")


@pytest.mark.asyncio
async def test_async_handlers_are_awaited() -> None:
    handler = AsyncHandler()
    [run] = await CallbackManager.configure([handler]).on_llm_start({}, ["p"])

    await run.on_llm_new_token("x")

    assert handler.tokens == ["x"]


@pytest.mark.asyncio
async def test_function_mapping_callbacks() -> None:
    tokens: list[str] = []
    manager = CallbackManager.configure([{"on_llm_new_token": lambda token, **kw: tokens.append(token)}])

    [run] = await manager.on_llm_start({}, ["p"])
    await run.on_llm_new_token("hi")
    await run.on_llm_end(RESULT)

    assert tokens == ["hi"]


def test_function_handler_rejects_unknown_events() -> None:
    with pytest.raises(ValueError, match="on_token"):
        FunctionCallbackHandler({"on_token": print})


@pytest.mark.asyncio
async def test_chat_start_falls_back_to_text_prompts() -> None:
    text_only = TextOnlyHandler()
    recorder = RecordingCallbackHandler()
    manager = CallbackManager.configure([text_only, recorder])

    await manager.on_chat_model_start({}, [[HumanMessage(content="hello")]])

    assert text_only.prompts == ["Human: hello"]
    assert recorder.names() == ["on_chat_model_start"]


@pytest.mark.asyncio
async def test_end_and_error_are_exclusive() -> None:
    [run] = await CallbackManager().on_llm_start({}, ["p"])
    await run.on_llm_end(RESULT)

    assert run.outcome == "end"
    with pytest.raises(RuntimeError):
        await run.on_llm_error(ValueError("late"))
    with pytest.raises(RuntimeError):
        await run.on_llm_new_token("late")


@pytest.mark.asyncio
async def test_ignore_flags() -> None:
    handler = RecordingCallbackHandler(ignore_llm=True)
    manager = CallbackManager.configure([handler])

    [run] = await manager.on_llm_start({}, ["p"])
    await run.on_llm_end(RESULT)
    chain = await manager.on_chain_start({"name": "c"}, {"x": 1})
    await chain.on_chain_end({"y": 2})

    assert handler.names() == ["on_chain_start", "on_chain_end"]


def test_configure_merges_without_duplicates() -> None:
    shared = RecordingCallbackHandler()
    local = RecordingCallbackHandler()

    manager = CallbackManager.configure(
        [shared], [shared, local], inheritable_tags=["a"], local_tags=["b"],
        inheritable_metadata={"k": 1}, local_metadata={"m": 2},
    )

    assert manager.handlers == [shared, local]
    assert manager.inheritable_handlers == [shared]
    assert manager.tags == ["a", "b"]
    assert manager.inheritable_tags == ["a"]
    assert manager.metadata == {"k": 1, "m": 2}
    assert manager.inheritable_metadata == {"k": 1}


def test_configure_never_clones_handlers() -> None:
    handler = RecordingCallbackHandler()
    manager = CallbackManager.configure([handler])

    assert manager.handlers[0] is handler


def test_verbose_attaches_logging_handler() -> None:
    manager = CallbackManager.configure(verbose=True)

    assert any(isinstance(h, LoggingCallbackHandler) for h in manager.handlers)
    assert not manager.inheritable_handlers


@pytest.mark.asyncio
async def test_child_manager_inherits_only_inheritable() -> None:
    inherited = RecordingCallbackHandler()
    local = RecordingCallbackHandler()
    manager = CallbackManager.configure([inherited], [local], inheritable_tags=["outer"])

    chain = await manager.on_chain_start({"name": "seq"}, "input")
    child = chain.get_child("step:1")
    [llm_run] = await child.on_llm_start({}, ["p"])

    assert child.handlers == [inherited]
    assert child.parent_run_id == chain.run_id
    assert child.tags == ["outer", "step:1"]
    assert child.inheritable_tags == ["outer"]
    assert inherited.events[-1].parent_run_id == chain.run_id
    assert inherited.events[-1].tags == ["outer", "step:1"]
    assert llm_run.parent_run_id == chain.run_id
    assert local.names() == ["on_chain_start"]


def test_add_handler_is_additive() -> None:
    manager = CallbackManager()
    handler = RecordingCallbackHandler()

    manager.add_handler(handler, inherit=False)
    manager.add_handler(handler)

    assert manager.handlers == [handler]
    assert manager.inheritable_handlers == [handler]


@pytest.mark.asyncio
async def test_run_managers_cannot_be_copied() -> None:
    [run] = await CallbackManager().on_llm_start({}, ["p"])

    with pytest.raises(TypeError):
        run.copy()


@pytest.mark.asyncio
async def test_logging_handler_writes_structured_entries(log_entries: Any) -> None:
    manager = CallbackManager.configure([LoggingCallbackHandler()])

    [run] = await manager.on_chat_model_start({"_type": "fake"}, [[HumanMessage(content="hi")]])
    await run.on_llm_end(LLMResult(generations=[[Generation(text="yo")]], llm_output={"token_usage": {"total_tokens": 3}}))

    events = [e.event for e in log_entries.entries]
    assert events == ["llm start", "llm end"]
    end = log_entries.entries[-1].context
    assert end["run_id"] == str(run.run_id)
    assert end["usage_total_tokens"] == 3
    assert end["output"] == "yo"


@pytest.mark.asyncio
async def test_opentelemetry_spans_nest_under_chain() -> None:
    sdk_trace = pytest.importorskip("opentelemetry.sdk.trace")
    from opentelemetry.sdk.trace.export import SimpleSpanProcessor
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

    from lmcore.callbacks import OpenTelemetryCallbackHandler

    exporter = InMemorySpanExporter()
    provider = sdk_trace.TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    manager = CallbackManager.configure([OpenTelemetryCallbackHandler(provider.get_tracer("test"))])

    chain = await manager.on_chain_start({"name": "seq"}, "in")
    [run] = await chain.get_child().on_chat_model_start({"_type": "fake"}, [[HumanMessage(content="hi")]])
    await run.on_llm_new_token("h")
    await run.on_llm_error(ValueError("bad"))
    await chain.on_chain_end("out")

    spans = {s.name: s for s in exporter.get_finished_spans()}
    assert set(spans) == {"llm fake", "chain seq"}
    llm, parent = spans["llm fake"], spans["chain seq"]
    assert llm.parent.span_id == parent.context.span_id
    assert [e.name for e in llm.events] == ["token", "exception"]
    assert not llm.status.is_ok
