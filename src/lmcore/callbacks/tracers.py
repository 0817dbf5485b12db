"""OpenTelemetry tracing for model and chain runs.

Each run becomes one span, parented to the span of its parent run, so a
sequence calling a model shows up as a nested trace. Tokens are recorded as
span events.

Requires: pip install lmcore[otel]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from .base import BaseCallbackHandler

if TYPE_CHECKING:
    from ..outputs import LLMResult


def _import_otel() -> Any:
    """Lazy import opentelemetry with clear error."""
    try:
        from opentelemetry import trace
        return trace
    except ImportError as e:
        raise ImportError(
            "OpenTelemetry tracing requires opentelemetry packages. "
            "Install with: pip install lmcore[otel]"
        ) from e


class OpenTelemetryCallbackHandler(BaseCallbackHandler):
    """Emit one OpenTelemetry span per run.

    Args:
        tracer: Tracer to create spans with (default: global provider's "lmcore" tracer)
        record_tokens: Add an event per streamed token

    Example:
        >>> from opentelemetry.sdk.trace import TracerProvider
        >>> handler = OpenTelemetryCallbackHandler(TracerProvider().get_tracer("app"))
        >>> model.invoke("hi", {"callbacks": [handler]})
    """

    def __init__(self, tracer: Any = None, *, record_tokens: bool = True) -> None:
        self._trace = _import_otel()
        self.tracer = tracer or self._trace.get_tracer("lmcore")
        self.record_tokens = record_tokens
        self._spans: dict[UUID, Any] = {}

    def _start(self, name: str, run_id: UUID, parent_run_id: UUID | None, attributes: dict[str, Any]) -> None:
        parent = self._spans.get(parent_run_id) if parent_run_id else None
        context = self._trace.set_span_in_context(parent) if parent is not None else None
        span = self.tracer.start_span(name, context=context)
        span.set_attribute("lmcore.run_id", str(run_id))
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value if isinstance(value, (str, bool, int, float)) else str(value))
        self._spans[run_id] = span

    def _end(self, run_id: UUID, error: BaseException | None = None) -> None:
        span = self._spans.pop(run_id, None)
        if span is None:
            return
        if error is not None:
            from opentelemetry.trace import Status, StatusCode

            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
        span.end()

    def on_llm_start(
        self, serialized: dict[str, Any], prompts: list[str], *, run_id: UUID, parent_run_id: UUID | None = None,
        tags: list[str] | None = None, **kwargs: Any,
    ) -> None:
        self._start(f"llm {serialized.get('_type', 'model')}", run_id, parent_run_id, {
            "lmcore.model_type": serialized.get("_model"),
            "lmcore.llm_type": serialized.get("_type"),
            "lmcore.tags": ",".join(tags or []),
        })

    def on_llm_new_token(self, token: str, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        span = self._spans.get(run_id)
        if span is not None and self.record_tokens:
            span.add_event("token", {"token": token})

    def on_llm_end(self, response: LLMResult, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        span = self._spans.get(run_id)
        if span is not None:
            usage = (response.llm_output or {}).get("token_usage") or {}
            for key, value in usage.items():
                span.set_attribute(f"lmcore.usage.{key}", value)
            span.set_attribute("lmcore.cached", bool((response.llm_output or {}).get("cached")))
        self._end(run_id)

    def on_llm_error(self, error: BaseException, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._end(run_id, error)

    def on_chain_start(
        self, serialized: dict[str, Any], inputs: Any, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any,
    ) -> None:
        self._start(f"chain {kwargs.get('name') or serialized.get('name', 'runnable')}", run_id, parent_run_id, {})

    def on_chain_end(self, outputs: Any, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._end(run_id)

    def on_chain_error(self, error: BaseException, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._end(run_id, error)
