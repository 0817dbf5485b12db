"""Callback handler that writes run lifecycle events to the structured logger."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from ..observability import BoundLogger, get_logger
from .base import BaseCallbackHandler

if TYPE_CHECKING:
    from ..outputs import LLMResult


def _preview(text: str, limit: int = 80) -> str:
    return text if len(text) <= limit else f"{text[:limit - 3]}..."


class LoggingCallbackHandler(BaseCallbackHandler):
    """Log model and chain events.

    Start, end and error events are logged at info/error level; tokens at
    debug. Attached automatically to models constructed with `verbose=True`.

    Example:
        >>> model = FakeChatModel(callbacks=[LoggingCallbackHandler()])
        >>> model.invoke("hello")
        # => 10:30:45.120 [info] llm start model="fake-chat" run_id=... prompts=1
    """

    def __init__(self, logger: BoundLogger | None = None) -> None:
        self.log = logger or get_logger("lmcore.run")

    def _run_log(self, run_id: UUID, parent_run_id: UUID | None) -> BoundLogger:
        log = self.log.bind(run_id=str(run_id))
        return log.bind(parent_run_id=str(parent_run_id)) if parent_run_id else log

    def on_llm_start(
        self, serialized: dict[str, Any], prompts: list[str], *, run_id: UUID, parent_run_id: UUID | None = None,
        tags: list[str] | None = None, **kwargs: Any,
    ) -> None:
        self._run_log(run_id, parent_run_id).info(
            "llm start", model=serialized.get("_type"), prompts=len(prompts), tags=tags or [],
            prompt=_preview(prompts[0]) if prompts else "",
        )

    def on_llm_new_token(self, token: str, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._run_log(run_id, parent_run_id).debug("llm token", token=token)

    def on_llm_end(self, response: LLMResult, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        first = response.generations[0][0].text if response.generations and response.generations[0] else ""
        usage = (response.llm_output or {}).get("token_usage") or {}
        self._run_log(run_id, parent_run_id).info(
            "llm end", candidates=sum(len(g) for g in response.generations), output=_preview(first),
            cached=bool((response.llm_output or {}).get("cached")), **{f"usage_{k}": v for k, v in usage.items()},
        )

    def on_llm_error(self, error: BaseException, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._run_log(run_id, parent_run_id).error("llm error", error=repr(error), error_type=type(error).__name__)

    def on_chain_start(
        self, serialized: dict[str, Any], inputs: Any, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any,
    ) -> None:
        self._run_log(run_id, parent_run_id).info("chain start", chain=serialized.get("name"), run_name=kwargs.get("name"))

    def on_chain_end(self, outputs: Any, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._run_log(run_id, parent_run_id).info("chain end", output=_preview(str(outputs)))

    def on_chain_error(self, error: BaseException, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._run_log(run_id, parent_run_id).error("chain error", error=repr(error), error_type=type(error).__name__)
