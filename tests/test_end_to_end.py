"""
End-to-end: discover a package, sweep its health, score it, and call it through
a public collection's MCP endpoint.
Run with: pytest tests/test_end_to_end.py -v
"""
from datetime import datetime

import pytest

from toolhub.cache.cache_layer import CacheLayer
from toolhub.db.collection_repository import CollectionRepository
from toolhub.db.health_repository import HealthCheckRepository
from toolhub.db.models import DiscoveryMethod
from toolhub.db.package_repository import ToolRepository
from toolhub.executors.router import ExecutorRouter
from toolhub.health.checker import ToolHealthChecker
from toolhub.health.scheduler import HealthCheckScheduler
from toolhub.mcp.gateway import MCPGateway
from toolhub.registry.metadata import PackageMetadata
from toolhub.registry.sync import PackageSyncService
from toolhub.schema.extraction import SchemaExtractionService

FORMAT_DATE = {
    "type": "object",
    "properties": {"date": {"type": "string", "description": "ISO 8601 date to format"}},
    "required": ["date"],
}


@pytest.mark.asyncio
async def test_discover_check_score_and_call(fake_executor, executor_client, session_factory):
    fake_executor.serve_tool(FORMAT_DATE, output="January 2, 2024")
    cache = CacheLayer()
    sync_service = PackageSyncService(SchemaExtractionService(executor_client))
    scheduler = HealthCheckScheduler(
        session_factory, ToolHealthChecker(executor_client, timeout=1), concurrency=2, cache=cache,
    )
    gateway = MCPGateway(session_factory, ExecutorRouter(executor_client), cache)

    # 1. Discovery: the package lands with an extracted schema and UNKNOWN health
    metadata = PackageMetadata.model_validate({
        "name": "@acme/tools",
        "version": "1.0.0",
        "downloads_last_month": 0,
        "tools": [{"exportName": "formatDate", "description": "Formats a date"}],
    })
    async with session_factory() as session:
        async with session.begin():
            report = await sync_service.sync_package(session, metadata, DiscoveryMethod.CHANGES_FEED)
            tool_id = report.tools[0].tool_id
            collection = await CollectionRepository(session).create(
                "alice", "dev-tools", "Dev Tools", is_public=True,
            )
            await CollectionRepository(session).add_tool(collection.id, tool_id)

    async with session_factory() as session:
        tool = await ToolRepository(session).get(tool_id)
        assert tool.schema_source == "extracted"
        assert tool.import_health == "UNKNOWN"
        assert tool.execution_health == "UNKNOWN"

    # 2. Sweep: import and execution probes both pass
    now = datetime(2026, 3, 1, 9, 30)
    sweep = await scheduler.run_sweep(now)

    assert sweep.healthy == 1
    execute = fake_executor.calls_to(path="/execute-tool")[0]
    assert execute.payload["packageName"] == "@acme/tools"
    assert execute.payload["name"] == "formatDate"
    assert execute.payload["params"] == {"date": "test"}

    # 3. Score: full schema, no downloads, healthy, short description
    async with session_factory() as session:
        tool = await ToolRepository(session).get(tool_id)
        history = await HealthCheckRepository(session).recent(tool_id)
    assert tool.import_health == "HEALTHY"
    assert tool.execution_health == "HEALTHY"
    assert tool.last_health_check == now
    assert tool.quality_score == pytest.approx(0.65)
    assert len(history) == 1
    assert history[0].trigger_source == "scheduled"

    # 4. MCP: the tool is listed and callable by its namespaced name
    snapshot = await gateway.load_collection("alice", "dev-tools")
    listed = await gateway.handle(snapshot, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    assert [t["name"] for t in listed["result"]["tools"]] == ["acme-tools--formatDate"]

    called = await gateway.handle(snapshot, {
        "jsonrpc": "2.0", "id": 2, "method": "tools/call",
        "params": {"name": "acme-tools--formatDate", "arguments": {"date": "2024-01-02"}},
    })
    assert called["result"]["content"] == [{"type": "text", "text": "January 2, 2024"}]
    assert fake_executor.calls_to(path="/execute-tool")[-1].payload["params"] == {"date": "2024-01-02"}
