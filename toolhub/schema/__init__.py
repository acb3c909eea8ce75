"""Schema extraction and parameter/JSON Schema conversion."""
from .extraction import (
    SchemaExtractionService, ExtractionResult, ToolParameter,
    parameters_to_json_schema, json_schema_to_parameters,
)

__all__ = [
    "SchemaExtractionService", "ExtractionResult", "ToolParameter",
    "parameters_to_json_schema", "json_schema_to_parameters",
]
