"""Tests for token counting helpers."""

from __future__ import annotations

import pytest

from lmcore.language_models import tokens


def _no_tiktoken(name: str) -> object:
    raise ImportError("No module named 'tiktoken'")


@pytest.fixture
def fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tokens, "_load_encoding", _no_tiktoken)
    monkeypatch.setattr(tokens, "_warned", set())


def test_fallback_approximates_and_warns_once(fallback: None, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="lmcore.tokens"):
        assert tokens.count_tokens("abcdefgh", "gpt-4") == 2
        assert tokens.count_tokens("abcde", "gpt-4-0613") == 2

    warnings = [r for r in caplog.records if "falling back" in r.getMessage()]
    assert len(warnings) == 1


def test_fallback_never_raises_on_empty_text(fallback: None) -> None:
    assert tokens.count_tokens("") == 0


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("gpt-3.5-turbo-16k-0613", "gpt-3.5-turbo-16k"),
        ("gpt-3.5-turbo-0301", "gpt-3.5-turbo"),
        ("gpt-4-32k-0314", "gpt-4-32k"),
        ("gpt-4-0613", "gpt-4"),
        ("text-davinci-003", "text-davinci-003"),
    ],
)
def test_model_name_mapping(name: str, expected: str) -> None:
    assert tokens.get_model_name_for_tiktoken(name) == expected


@pytest.mark.parametrize(
    ("name", "size"),
    [("gpt-4", 8192), ("gpt-4-32k-0613", 32768), ("gpt-3.5-turbo", 4096), ("code-davinci-002", 8000), ("mystery", 4097)],
)
def test_context_sizes(name: str, size: int) -> None:
    assert tokens.get_model_context_size(name) == size


def test_embedding_context_size() -> None:
    assert tokens.get_embedding_context_size("text-embedding-ada-002") == 8191
    assert tokens.get_embedding_context_size() == 2046


def test_calculate_max_tokens(fallback: None) -> None:
    assert tokens.calculate_max_tokens("abcd", "gpt-4") == 8191
