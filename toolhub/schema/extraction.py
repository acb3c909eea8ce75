"""
Schema Extraction Service
Obtains a tool's input schema by asking the default sandbox to load and describe
it, so untrusted package code never runs on the registry host. Also converts
between author-declared parameter lists and JSON Schema.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from toolhub.errors import ExecutorError
from toolhub.executors.client import ExecutorClient
from toolhub.executors.models import ExportListing

logger = logging.getLogger(__name__)


class ToolParameter(BaseModel):
    """Author-declared input parameter."""
    name: str
    type: str = "string"  # string, number, integer, boolean, object, array
    description: str = ""
    required: bool = True
    default: Optional[Any] = None


class ExtractionResult(BaseModel):
    success: bool
    input_schema: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class SchemaExtractionService:
    """Always targets the default sandbox; custom executors are never asked to introspect."""

    def __init__(self, client: ExecutorClient):
        self._client = client

    async def extract_schema(
        self,
        package_name: str,
        export_name: str,
        version: str,
        env: Optional[Dict[str, Any]] = None,
    ) -> ExtractionResult:
        try:
            described = await self._client.introspect(package_name, export_name, version, env)
        except ExecutorError as e:
            logger.info(f"[SCHEMA] Extraction failed for {package_name}/{export_name}: {e.message}")
            return ExtractionResult(success=False, error=e.message, error_type=e.error_type.value)

        if not described.input_schema:
            return ExtractionResult(success=False, error="No inputSchema returned from executor")

        return ExtractionResult(
            success=True,
            input_schema=described.input_schema,
            description=described.description or None,
        )

    async def list_exports(
        self,
        package_name: str,
        version: str,
        env: Optional[Dict[str, Any]] = None,
    ) -> ExportListing:
        """Raises ExecutorError; callers decide whether a missing listing is fatal."""
        return await self._client.list_exports(package_name, version, env)


# ── Conversions ───────────────────────────────────────────────────────────────

def parameters_to_json_schema(parameters: Sequence[ToolParameter]) -> Dict[str, Any]:
    """Author parameter list -> closed JSON Schema object."""
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param in parameters:
        prop: Dict[str, Any] = {"type": param.type or "string", "description": param.description}
        if param.default is not None:
            prop["default"] = param.default
        properties[param.name] = prop
        if param.required:
            required.append(param.name)
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def json_schema_to_parameters(input_schema: Dict[str, Any]) -> List[Dict[str, Any]]:
    """JSON Schema object -> parameter list (name, type, required, description)."""
    properties = input_schema.get("properties") or {}
    required = set(input_schema.get("required") or [])
    parameters = []
    if not isinstance(properties, dict):
        return parameters
    for name, prop in properties.items():
        prop = prop if isinstance(prop, dict) else {}
        param = {
            "name": name,
            "type": _schema_type(prop),
            "required": name in required,
            "description": prop.get("description") or "",
        }
        if "default" in prop:
            param["default"] = prop["default"]
        parameters.append(param)
    return parameters


def _schema_type(prop: Dict[str, Any]) -> str:
    t = prop.get("type")
    if isinstance(t, list):
        concrete = [x for x in t if x != "null"]
        return concrete[0] if concrete else "unknown"
    if isinstance(t, str):
        return t
    if "enum" in prop:
        return "string"
    return "unknown"
