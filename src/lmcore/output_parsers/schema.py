"""Schemas for structured output: pydantic model classes or JSON-Schema mappings."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Union

from jsonschema import Draft202012Validator
from jsonschema.validators import validator_for
from pydantic import BaseModel, ValidationError

from ..errors import OutputParserException

StructuredSchema = Union[type[BaseModel], Mapping[str, Any]]


def is_model_class(schema: object) -> bool:
    return isinstance(schema, type) and issubclass(schema, BaseModel)


def to_json_schema(schema: StructuredSchema) -> dict[str, Any]:
    if is_model_class(schema):
        return schema.model_json_schema()  # type: ignore[union-attr]
    if isinstance(schema, Mapping):
        return dict(schema)
    raise TypeError(f"Schema must be a pydantic model class or a JSON-Schema mapping, got {type(schema).__name__}")


def schema_name(schema: StructuredSchema, name: str | None = None) -> str:
    """Tool name: explicit name, else the model class name, else the schema title, else "extract"."""
    if name:
        return name
    if is_model_class(schema):
        return schema.__name__  # type: ignore[union-attr]
    title = schema.get("title") if isinstance(schema, Mapping) else None
    return title if isinstance(title, str) and title else "extract"


def to_tool_definition(schema: StructuredSchema, name: str | None = None) -> dict[str, Any]:
    """Render a schema as a function-style tool definition."""
    parameters = to_json_schema(schema)
    description = parameters.pop("description", None) or ""
    parameters.pop("title", None)
    return {
        "type": "function",
        "function": {"name": schema_name(schema, name), "description": description, "parameters": parameters},
    }


def validate_output(schema: StructuredSchema, value: Any, *, llm_output: object = None) -> Any:
    """Validate a parsed value against the schema.

    Returns a model instance for pydantic schemas and the value itself for
    JSON-Schema mappings.

    Raises:
        OutputParserException: The value does not conform
    """
    if is_model_class(schema):
        try:
            return schema.model_validate(value)  # type: ignore[union-attr]
        except ValidationError as e:
            raise OutputParserException(f"Failed to parse {schema.__name__} from model output: {e}", llm_output=llm_output) from e  # type: ignore[union-attr]

    json_schema = to_json_schema(schema)
    validator_cls = validator_for(json_schema, default=Draft202012Validator)
    errors = sorted(validator_cls(json_schema).iter_errors(value), key=lambda e: list(e.path))
    if errors:
        details = "; ".join(f"{'/'.join(map(str, e.path)) or '<root>'}: {e.message}" for e in errors)
        raise OutputParserException(f"Model output does not match schema: {details}", llm_output=llm_output)
    return value
