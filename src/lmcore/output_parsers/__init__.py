"""Parsers that turn model output into values."""

from .base import BaseOutputParser
from .json import JsonOutputParser, parse_json_markdown
from .schema import StructuredSchema, is_model_class, schema_name, to_json_schema, to_tool_definition, validate_output
from .tools import JsonOutputKeyToolsParser

__all__ = [
    "BaseOutputParser",
    "JsonOutputParser",
    "JsonOutputKeyToolsParser",
    "parse_json_markdown",
    "StructuredSchema",
    "is_model_class",
    "schema_name",
    "to_json_schema",
    "to_tool_definition",
    "validate_output",
]
