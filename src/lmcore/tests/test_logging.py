"""Tests for structured logging."""

from __future__ import annotations

import io

import orjson
import pytest

from lmcore.observability import (
    CollectingRenderer,
    ConsoleRenderer,
    JsonRenderer,
    configure_logging,
    get_logger,
    set_renderer,
)


def test_json_renderer_writes_json_lines() -> None:
    out = io.StringIO()
    set_renderer(JsonRenderer(output=out))

    get_logger("lmcore.test", component="cache").info("cache hit", key="abc", candidates=2)

    record = orjson.loads(out.getvalue().strip())
    assert record["event"] == "cache hit"
    assert record["level"] == "info"
    assert record["logger"] == "lmcore.test"
    assert record["component"] == "cache"
    assert record["candidates"] == 2


def test_console_renderer_plain_output() -> None:
    out = io.StringIO()
    set_renderer(ConsoleRenderer(output=out, colors=False, show_timestamp=False))

    get_logger().warning("retrying", attempt=2)

    assert out.getvalue().strip() == '[warning] retrying attempt=2'


def test_bind_is_immutable(log_entries: CollectingRenderer) -> None:
    base = get_logger("svc")
    bound = base.bind_run("run-1", "fake")

    bound.info("start")
    base.info("plain")

    assert log_entries.entries[0].context == {"logger": "svc", "run_id": "run-1", "model": "fake"}
    assert "run_id" not in log_entries.entries[1].context
    assert "run_id" not in bound.unbind("run_id").context


def test_scope_adds_context_temporarily(log_entries: CollectingRenderer) -> None:
    log = get_logger()

    with log.scope(request_id="r1"):
        log.info("inside")
    log.info("outside")

    assert log_entries.entries[0].context["request_id"] == "r1"
    assert "request_id" not in log_entries.entries[1].context


def test_level_filtering(log_entries: CollectingRenderer) -> None:
    configure_logging("none", "WARNING")
    set_renderer(log_entries)
    try:
        log = get_logger()
        log.info("dropped")
        log.error("kept")
    finally:
        configure_logging("none", "INFO")
        set_renderer(log_entries)

    assert [e.event for e in log_entries.entries] == ["kept"]


def test_configure_logging_rejects_unknown_format() -> None:
    with pytest.raises(ValueError, match="xml"):
        configure_logging("xml")
