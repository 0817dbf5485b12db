"""Shared fixtures: isolate global cache, settings and log output per test."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from lmcore.cache import reset_cache
from lmcore.config import clear_settings_cache
from lmcore.observability import CollectingRenderer, NoOpRenderer, set_renderer


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Fresh settings (fast backoff), empty global cache, silent logs."""
    for var in list(os.environ):
        if var.startswith("LMCORE_"):
            monkeypatch.delenv(var)
    monkeypatch.setenv("LMCORE_CALLER_BASE_DELAY", "0.001")
    monkeypatch.setenv("LMCORE_CALLER_MAX_DELAY", "0.005")
    clear_settings_cache()
    reset_cache()
    set_renderer(NoOpRenderer())
    yield
    reset_cache()
    clear_settings_cache()
    set_renderer(None)


@pytest.fixture
def log_entries() -> CollectingRenderer:
    """Capture structured log entries emitted during the test."""
    renderer = CollectingRenderer()
    set_renderer(renderer)
    return renderer
