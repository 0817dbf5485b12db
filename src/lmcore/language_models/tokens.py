"""Token counting and model context-size helpers.

Counting uses tiktoken when it is installed and knows the model; otherwise
it degrades to roughly one token per four characters. Counting never raises.

Requires (for exact counts): pip install lmcore[tiktoken]
"""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any

logger = logging.getLogger("lmcore.tokens")

DEFAULT_ENCODING_MODEL = "gpt2"

# Context windows by tiktoken model name
_CONTEXT_SIZES: dict[str, int] = {
    "gpt-3.5-turbo-16k": 16384,
    "gpt-3.5-turbo": 4096,
    "gpt-4-32k": 32768,
    "gpt-4": 8192,
    "text-davinci-003": 4097,
    "text-curie-001": 2048,
    "text-babbage-001": 2048,
    "text-ada-001": 2048,
    "code-davinci-002": 8000,
    "code-cushman-001": 2048,
}
DEFAULT_CONTEXT_SIZE = 4097

_warned: set[str] = set()


def get_model_name_for_tiktoken(model_name: str) -> str:
    """Collapse dated/suffixed model names onto the base name tiktoken knows.

    >>> get_model_name_for_tiktoken("gpt-4-0613")
    'gpt-4'
    """
    if model_name.startswith("gpt-3.5-turbo-16k"):
        return "gpt-3.5-turbo-16k"
    if model_name.startswith("gpt-3.5-turbo-"):
        return "gpt-3.5-turbo"
    if model_name.startswith("gpt-4-32k"):
        return "gpt-4-32k"
    if model_name.startswith("gpt-4-"):
        return "gpt-4"
    return model_name


def get_model_context_size(model_name: str) -> int:
    return _CONTEXT_SIZES.get(get_model_name_for_tiktoken(model_name), DEFAULT_CONTEXT_SIZE)


def get_embedding_context_size(model_name: str | None = None) -> int:
    return 8191 if model_name == "text-embedding-ada-002" else 2046


@lru_cache(maxsize=32)
def _load_encoding(model_name: str) -> Any:
    import tiktoken

    return tiktoken.encoding_for_model(model_name)


def approximate_token_count(text: str) -> int:
    return math.ceil(len(text) / 4)


def count_tokens(text: str, model_name: str | None = None) -> int:
    """Count tokens in `text` for `model_name` (gpt2 encoding when None).

    Falls back to the four-characters-per-token heuristic when tiktoken is
    missing, does not know the model, or fails to encode; the first fallback
    per model logs a warning.
    """
    encoding_model = get_model_name_for_tiktoken(model_name) if model_name else DEFAULT_ENCODING_MODEL
    try:
        return len(_load_encoding(encoding_model).encode(text))
    except Exception as e:
        if encoding_model not in _warned:
            _warned.add(encoding_model)
            logger.warning(f"Failed to calculate number of tokens for {encoding_model}, falling back to approximate count: {e}")
        return approximate_token_count(text)


def calculate_max_tokens(prompt: str, model_name: str) -> int:
    """Tokens left in the model's context window after `prompt`."""
    return get_model_context_size(model_name) - count_tokens(prompt, model_name)
