"""Structured output: coerce a chat model's response into a schema-validated value.

Two methods constrain generation:
- function_calling: bind the schema as the only tool and force the model to
  call it; the call's arguments are the value
- json_mode: ask the provider for a JSON object response and parse the text

Either way the value is validated against the schema before it is returned;
malformed JSON or a non-conforming value raises OutputParserException.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..output_parsers import (
    BaseOutputParser,
    JsonOutputKeyToolsParser,
    JsonOutputParser,
    StructuredSchema,
    is_model_class,
    schema_name,
    to_tool_definition,
    validate_output,
)
from ..runnables.base import Runnable, _start_chain
from ..runnables.config import OptionsLike, ensure_options

if TYPE_CHECKING:
    from ..messages import AIMessage
    from .chat_models import BaseChatModel

FUNCTION_CALLING = "function_calling"
JSON_MODE = "json_mode"

_METHOD_ALIASES = {
    "function_calling": FUNCTION_CALLING,
    "functionCalling": FUNCTION_CALLING,
    "json_mode": JSON_MODE,
    "jsonMode": JSON_MODE,
}

_LEGACY_KEYS = {"schema", "name", "method", "include_raw", "includeRaw"}


class StructuredOutputRunnable(Runnable[Any, Any]):
    """Runs a configured model, parses its output and validates it against a schema.

    Returns the validated value, or `{"raw": AIMessage, "parsed": value}`
    when `include_raw` is set. Streaming yields the single final value.
    """

    def __init__(
        self,
        model: Runnable[Any, AIMessage],
        parser: BaseOutputParser[Any],
        schema: StructuredSchema,
        *,
        method: str,
        include_raw: bool = False,
        name: str | None = None,
    ) -> None:
        self.model = model
        self.parser = parser
        self.schema = schema
        self.method = method
        self.include_raw = include_raw
        self.name = name

    async def ainvoke(self, input: Any, options: OptionsLike = None) -> Any:
        opts = ensure_options(options)
        run = await _start_chain(self, input, opts)
        try:
            raw = await self.model.ainvoke(input, opts.model_copy(update={"callbacks": run.get_child("structured:model")}))
            parsed = validate_output(self.schema, await self.parser.ainvoke(raw), llm_output=raw)
        except BaseException as e:
            await run.on_chain_error(e)
            raise
        output = {"raw": raw, "parsed": parsed} if self.include_raw else parsed
        await run.on_chain_end(output)
        return output

    def __repr__(self) -> str:
        return f"StructuredOutputRunnable(name={self.name!r}, method={self.method!r}, include_raw={self.include_raw})"


def build_structured_output(
    model: BaseChatModel,
    schema: StructuredSchema | None,
    *,
    name: str | None = None,
    method: str | None = None,
    include_raw: bool | None = None,
) -> StructuredOutputRunnable:
    """Wire `model` for structured output (see BaseChatModel.with_structured_output)."""
    if _is_legacy_options(schema):
        if name is not None or method is not None or include_raw is not None:
            raise ValueError(
                "Pass either a legacy options mapping with a 'schema' key or keyword arguments, not both"
            )
        schema, name, method, include_raw = _unpack_legacy(schema)  # type: ignore[arg-type]
    if schema is None:
        raise ValueError("with_structured_output requires a schema")
    if not (is_model_class(schema) or isinstance(schema, Mapping)):
        raise TypeError(f"Schema must be a pydantic model class or a JSON-Schema mapping, got {type(schema).__name__}")

    resolved = _normalize_method(method)
    tool_name = schema_name(schema, name)
    if resolved == FUNCTION_CALLING:
        bound = model.bind_tools([to_tool_definition(schema, tool_name)], tool_choice=tool_name)
        parser: BaseOutputParser[Any] = JsonOutputKeyToolsParser(tool_name, first_tool_only=True)
    else:
        bound = model.bind(response_format={"type": "json_object"})
        parser = JsonOutputParser()
    return StructuredOutputRunnable(
        bound, parser, schema, method=resolved, include_raw=bool(include_raw), name=tool_name,
    )


def _is_legacy_options(schema: object) -> bool:
    if not isinstance(schema, Mapping) or "schema" not in schema:
        return False
    inner = schema["schema"]
    return is_model_class(inner) or isinstance(inner, Mapping)


def _unpack_legacy(options: Mapping[str, Any]) -> tuple[Any, str | None, str | None, bool | None]:
    unknown = set(options) - _LEGACY_KEYS
    if unknown:
        raise ValueError(f"Unknown structured output options: {sorted(unknown)}")
    include_raw = options.get("include_raw", options.get("includeRaw"))
    return options["schema"], options.get("name"), options.get("method"), include_raw


def _normalize_method(method: str | None) -> str:
    if method is None:
        return FUNCTION_CALLING
    resolved = _METHOD_ALIASES.get(method)
    if resolved is None:
        raise ValueError(f"Unknown structured output method {method!r}. Expected 'function_calling' or 'json_mode'")
    return resolved
