"""Language model base classes and the shared invocation engine."""

from .base import STREAM_TOKENS_KEY, BaseLanguageModel, LanguageModelInput
from .chat_models import BaseChatModel, SimpleChatModel, message_to_chunk
from .llms import LLM, BaseLLM
from .structured import StructuredOutputRunnable, build_structured_output
from .tokens import (
    approximate_token_count,
    calculate_max_tokens,
    count_tokens,
    get_embedding_context_size,
    get_model_context_size,
    get_model_name_for_tiktoken,
)

__all__ = [
    "BaseLanguageModel",
    "BaseChatModel",
    "SimpleChatModel",
    "BaseLLM",
    "LLM",
    "LanguageModelInput",
    "STREAM_TOKENS_KEY",
    "StructuredOutputRunnable",
    "build_structured_output",
    "message_to_chunk",
    "approximate_token_count",
    "calculate_max_tokens",
    "count_tokens",
    "get_embedding_context_size",
    "get_model_context_size",
    "get_model_name_for_tiktoken",
]
