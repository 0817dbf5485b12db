"""lmcore - Async language-model invocation core.

Chat and completion model base classes that share one invocation engine:
response caching keyed by call fingerprint, a retrying concurrency-limited
caller, callback fan-out of run lifecycle events, and structured output
validated against pydantic models or JSON Schema.

Quick Start:
    >>> from lmcore import FakeListChatModel, InMemoryCache
    >>> model = FakeListChatModel(responses=["Hello!"], cache=InMemoryCache())
    >>> model.invoke("hi").content
    'Hello!'

Callbacks:
    >>> tokens = []
    >>> model.invoke("hi", {"callbacks": [{"on_llm_new_token": lambda t, **kw: tokens.append(t)}]})
    >>> "".join(tokens)   # replayed from the cache, token by token
    'Hello!'

Structured Output:
    >>> schema = {"type": "object", "properties": {"ok": {"type": "boolean"}}, "required": ["ok"]}
    >>> FakeListChatModel(responses=['{"ok": true}']).with_structured_output(schema).invoke("?")
    {'ok': True}

Composition:
    >>> chain = model | (lambda message: message.content.upper())
    >>> chain.invoke("hi")
    'HELLO!'
"""

from __future__ import annotations

__version__ = "0.1.0"

# Messages & prompts
from .messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    InvalidToolCall,
    MessageLike,
    SystemMessage,
    ToolCall,
    ToolMessage,
    coerce_message_like,
    get_buffer_string,
)
from .prompt_values import ChatPromptValue, PromptValue, StringPromptValue

# Outputs
from .outputs import (
    ChatGeneration,
    ChatGenerationChunk,
    Generation,
    GenerationChunk,
    GenerationResult,
    LLMResult,
    TokenUsage,
)

# Errors
from .errors import (
    CancelledInvocationError,
    ErrorCode,
    InvocationTimeoutError,
    LMError,
    OutputParserException,
    ProviderError,
    classify_exception,
)

# Cache
from .cache import BaseCache, InMemoryCache, get_cache, make_cache_key, reset_cache, set_cache

# Callbacks
from .callbacks import (
    BaseCallbackHandler,
    CallbackManager,
    CallbackManagerForLLMRun,
    FunctionCallbackHandler,
    LoggingCallbackHandler,
)

# Runtime
from .runtime import AbortController, AbortSignal, AsyncCaller

# Runnables
from .runnables import (
    CallOptions,
    Runnable,
    RunnableLambda,
    RunnableParallel,
    RunnableSequence,
    merge_call_options,
)

# Models
from .language_models import (
    BaseChatModel,
    BaseLanguageModel,
    BaseLLM,
    LLM,
    SimpleChatModel,
    StructuredOutputRunnable,
)

# Parsers
from .output_parsers import JsonOutputKeyToolsParser, JsonOutputParser

# Config
from .config import get_settings

# Test doubles
from .testing import FakeChatModel, FakeListChatModel, FakeListLLM, RecordingCallbackHandler

__all__ = [
    # Version
    "__version__",
    # Messages & prompts
    "BaseMessage",
    "HumanMessage",
    "AIMessage",
    "AIMessageChunk",
    "SystemMessage",
    "ToolMessage",
    "ToolCall",
    "InvalidToolCall",
    "MessageLike",
    "coerce_message_like",
    "get_buffer_string",
    "PromptValue",
    "StringPromptValue",
    "ChatPromptValue",
    # Outputs
    "Generation",
    "GenerationChunk",
    "ChatGeneration",
    "ChatGenerationChunk",
    "GenerationResult",
    "LLMResult",
    "TokenUsage",
    # Errors
    "ErrorCode",
    "LMError",
    "ProviderError",
    "CancelledInvocationError",
    "InvocationTimeoutError",
    "OutputParserException",
    "classify_exception",
    # Cache
    "BaseCache",
    "InMemoryCache",
    "make_cache_key",
    "get_cache",
    "set_cache",
    "reset_cache",
    # Callbacks
    "BaseCallbackHandler",
    "FunctionCallbackHandler",
    "LoggingCallbackHandler",
    "CallbackManager",
    "CallbackManagerForLLMRun",
    # Runtime
    "AsyncCaller",
    "AbortController",
    "AbortSignal",
    # Runnables
    "Runnable",
    "RunnableSequence",
    "RunnableParallel",
    "RunnableLambda",
    "CallOptions",
    "merge_call_options",
    # Models
    "BaseLanguageModel",
    "BaseChatModel",
    "SimpleChatModel",
    "BaseLLM",
    "LLM",
    "StructuredOutputRunnable",
    # Parsers
    "JsonOutputParser",
    "JsonOutputKeyToolsParser",
    # Config
    "get_settings",
    # Test doubles
    "FakeChatModel",
    "FakeListChatModel",
    "FakeListLLM",
    "RecordingCallbackHandler",
]
