"""Test doubles: fake models and a recording callback handler."""

from .fake import (
    FailingChatModel,
    FakeChatModel,
    FakeListChatModel,
    FakeListLLM,
    FakeMultiCandidateChatModel,
    FakeStreamingChatModel,
)
from .handlers import RecordedEvent, RecordingCallbackHandler

__all__ = [
    "FakeChatModel",
    "FakeListChatModel",
    "FakeStreamingChatModel",
    "FakeMultiCandidateChatModel",
    "FakeListLLM",
    "FailingChatModel",
    "RecordingCallbackHandler",
    "RecordedEvent",
]
