"""
Tests for SchemaExtractionService and the parameter <-> JSON Schema conversions.
"""
import pytest

from conftest import SANDBOX_HOST
from toolhub.schema.extraction import (
    SchemaExtractionService, ToolParameter, json_schema_to_parameters, parameters_to_json_schema,
)


@pytest.fixture
def extractor(executor_client):
    return SchemaExtractionService(executor_client)


class TestExtraction:

    @pytest.mark.asyncio
    async def test_success(self, fake_executor, extractor):
        schema = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}
        fake_executor.route("/load-and-describe", {"success": True, "tool": {"inputSchema": schema}})

        result = await extractor.extract_schema("@acme/search", "search", "2.0.0", {"KEY": "x"})

        assert result.success is True
        assert result.input_schema == schema
        assert result.error is None
        assert fake_executor.calls[0].host == SANDBOX_HOST

    @pytest.mark.asyncio
    async def test_empty_schema_is_failure(self, fake_executor, extractor):
        fake_executor.route("/load-and-describe", {"success": True, "tool": {"inputSchema": {}}})

        result = await extractor.extract_schema("@acme/search", "search", "2.0.0")

        assert result.success is False
        assert "inputSchema" in result.error

    @pytest.mark.asyncio
    async def test_executor_error_is_captured(self, fake_executor, extractor):
        fake_executor.route(
            "/load-and-describe", (500, {"success": False, "error": "Export search not found"}),
        )

        result = await extractor.extract_schema("@acme/search", "search", "2.0.0")

        assert result.success is False
        assert result.error == "Export search not found"
        assert result.error_type == "execution_failure"

    @pytest.mark.asyncio
    async def test_sandbox_down_is_captured(self, extractor):
        result = await extractor.extract_schema("@acme/search", "search", "2.0.0")

        assert result.success is False
        assert result.error_type == "network"


class TestConversions:

    def test_parameters_to_json_schema(self):
        schema = parameters_to_json_schema([
            ToolParameter(name="query", type="string", description="Search terms"),
            ToolParameter(name="limit", type="integer", description="Max hits", required=False, default=10),
        ])

        assert schema == {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search terms"},
                "limit": {"type": "integer", "description": "Max hits", "default": 10},
            },
            "required": ["query"],
            "additionalProperties": False,
        }

    def test_parameters_conversion_is_deterministic(self):
        params = [ToolParameter(name="b"), ToolParameter(name="a", type="number")]
        assert parameters_to_json_schema(params) == parameters_to_json_schema(params)
        assert list(parameters_to_json_schema(params)["properties"]) == ["b", "a"]

    def test_json_schema_to_parameters(self):
        params = json_schema_to_parameters({
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "ISO date"},
                "tz": {"type": ["string", "null"], "default": "UTC"},
                "mode": {"enum": ["short", "long"]},
                "extra": {},
            },
            "required": ["date"],
        })

        by_name = {p["name"]: p for p in params}
        assert by_name["date"] == {"name": "date", "type": "string", "required": True, "description": "ISO date"}
        assert by_name["tz"]["type"] == "string"
        assert by_name["tz"]["default"] == "UTC"
        assert by_name["tz"]["required"] is False
        assert by_name["mode"]["type"] == "string"
        assert by_name["extra"]["type"] == "unknown"

    def test_schema_without_properties(self):
        assert json_schema_to_parameters({"type": "object"}) == []
