"""
API route integration tests using FastAPI TestClient.
The app runs against a throwaway SQLite database and a fake executor transport.
Run: pytest tests/test_api_routes.py -v
"""
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import FORMAT_DATE_SCHEMA, SANDBOX_URL, seed_tool
from toolhub.api.server import create_app
from toolhub.config.settings import Settings
from toolhub.db.base import Base
from toolhub.db.collection_repository import AgentRepository, CollectionRepository
from toolhub.db.health_repository import HealthCheckRepository
from toolhub.db.package_repository import ToolRepository
from toolhub.executors.config import CustomUrlExecutorConfig

CRON_SECRET = "s3cret"
CUSTOM_HOST = "exec.example.com"
AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


async def _create_tables(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _seed_owner(factory, collection_executor=None, agent_executor=None, tool_ids=()):
    async with factory() as session:
        async with session.begin():
            collection = await CollectionRepository(session).create(
                "alice", "dev-tools", "Dev Tools", description="Everyday helpers",
                is_public=True, executor=collection_executor,
            )
            for tool_id in tool_ids:
                await CollectionRepository(session).add_tool(collection.id, tool_id)
            agent = await AgentRepository(session).create("Scheduler bot", executor=agent_executor)
            return collection.id, agent.id


async def _load_health(factory, tool_id):
    async with factory() as session:
        tool = await ToolRepository(session).get(tool_id)
        history = await HealthCheckRepository(session).recent(tool_id)
        return tool, history


@pytest.fixture
def factory(db_engine):
    asyncio.run(_create_tables(db_engine))
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def client(db_engine, factory, fake_executor):
    """Create a TestClient for the FastAPI app."""
    app_settings = Settings(
        ENVIRONMENT="test",
        EXECUTOR_URL=SANDBOX_URL,
        CRON_SECRET=CRON_SECRET,
        HEALTH_CHECK_TIMEOUT_SECONDS=0.5,
        INTERACTIVE_TIMEOUT_SECONDS=5,
    )
    app = create_app(app_settings, engine=db_engine, executor_transport=fake_executor.transport())
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def tool_id(factory):
    return asyncio.run(seed_tool(factory))


# ══════════════════════════════════════════════════════════════════
# SYSTEM
# ══════════════════════════════════════════════════════════════════

class TestSystemRoutes:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "ok"
        assert data["environment"] == "test"

    def test_openapi_tags_present(self, client):
        schema = client.get("/openapi.json").json()
        tag_names = [t["name"] for t in schema.get("tags", [])]
        for tag in ("Executors", "Tools", "Registry", "Health", "Cron", "MCP"):
            assert tag in tag_names


# ══════════════════════════════════════════════════════════════════
# EXECUTORS
# ══════════════════════════════════════════════════════════════════

class TestVerifyRoute:

    def test_invalid_url(self, client, fake_executor):
        r = client.post("/executors/verify", json={"url": "not-a-url"})
        assert r.status_code == 200
        assert r.json() == {"valid": False, "healthCheck": None, "testExecution": None,
                            "errors": ["Invalid URL format"]}
        assert r.headers["cache-control"] == "no-store"
        assert fake_executor.calls == []

    def test_healthy_executor(self, client, fake_executor):
        fake_executor.serve_tool({"type": "object"}, host=CUSTOM_HOST)

        r = client.post("/executors/verify", json={"url": f"https://{CUSTOM_HOST}", "apiKey": "sk-1"})

        data = r.json()
        assert data["valid"] is True
        assert data["healthCheck"]["healthy"] is True
        assert data["testExecution"]["success"] is True
        assert fake_executor.calls_to(host=CUSTOM_HOST)[0].headers["authorization"] == "Bearer sk-1"


class TestExecuteRoute:

    def test_default_sandbox(self, client, fake_executor, tool_id):
        fake_executor.route("/execute-tool", {"success": True, "output": "Jan 2, 2024", "executionTimeMs": 9})

        r = client.post("/tools/execute", json={"toolId": tool_id, "params": {"date": "2024-01-02"}})

        assert r.status_code == 200
        data = r.json()
        assert data["success"] is True
        assert data["output"] == "Jan 2, 2024"
        assert data["executor"] == "Default Executor"

    def test_lookup_by_package_and_export(self, client, fake_executor, tool_id):
        fake_executor.route("/execute-tool", {"success": True, "output": 1})

        r = client.post("/tools/execute", json={
            "packageName": "@acme/tools", "exportName": "formatDate", "env": {"TZ": "UTC"},
        })

        assert r.status_code == 200
        assert fake_executor.calls[0].payload["env"] == {"TZ": "UTC"}

    def test_tool_failure_is_422(self, client, fake_executor, tool_id):
        fake_executor.route("/execute-tool", (500, {"success": False, "error": "Invalid date"}))

        r = client.post("/tools/execute", json={"toolId": tool_id, "params": {"date": "x"}})

        assert r.status_code == 422
        assert r.json()["error_code"] == "execution_failure"

    def test_timeout_is_504(self, client, fake_executor, tool_id):
        fake_executor.hang("/execute-tool")

        r = client.post("/tools/execute", json={"toolId": tool_id, "timeoutSeconds": 0.2})

        assert r.status_code == 504
        assert r.json()["error_code"] == "executor_timeout"

    def test_collection_executor_is_used(self, client, fake_executor, factory, tool_id):
        fake_executor.route("/execute-tool", {"success": True, "output": "custom"}, host=CUSTOM_HOST)
        collection_id, _ = asyncio.run(_seed_owner(
            factory, collection_executor=CustomUrlExecutorConfig(url=f"https://{CUSTOM_HOST}"),
        ))

        r = client.post("/tools/execute", json={"toolId": tool_id, "collectionId": collection_id})

        assert r.status_code == 200
        assert r.json()["executor"] == f"Custom: {CUSTOM_HOST}"

    def test_agent_executor_wins_and_never_falls_back(self, client, fake_executor, factory, tool_id):
        fake_executor.route("/execute-tool", {"success": True, "output": "sandbox"})
        fake_executor.route("/execute-tool", {"success": True, "output": "collection"}, host=CUSTOM_HOST)
        collection_id, agent_id = asyncio.run(_seed_owner(
            factory,
            collection_executor=CustomUrlExecutorConfig(url=f"https://{CUSTOM_HOST}"),
            agent_executor=CustomUrlExecutorConfig(url="https://agent-down.example.com"),
        ))

        r = client.post("/tools/execute", json={
            "toolId": tool_id, "collectionId": collection_id, "agentId": agent_id,
        })

        assert r.status_code == 502
        assert r.json()["error_code"] == "executor_unreachable"
        assert fake_executor.calls_to(host="sandbox.test") == []
        assert fake_executor.calls_to(host=CUSTOM_HOST) == []

    def test_unknown_tool_is_404(self, client):
        r = client.post("/tools/execute", json={"toolId": "tool-missing"})
        assert r.status_code == 404
        assert r.json()["kind"] == "domain_not_found"

    def test_missing_tool_reference_is_400(self, client):
        r = client.post("/tools/execute", json={"params": {}})
        assert r.status_code == 400
        assert r.json()["kind"] == "validation"


# ══════════════════════════════════════════════════════════════════
# REGISTRY & HEALTH
# ══════════════════════════════════════════════════════════════════

class TestRegistryRoutes:

    def test_sync_package(self, client, fake_executor):
        fake_executor.serve_tool(FORMAT_DATE_SCHEMA)
        body = {
            "package": {
                "name": "@acme/tools",
                "version": "1.0.0",
                "downloads_last_month": 250,
                "tools": [{"exportName": "formatDate", "description": "Formats a date"}],
            },
            "discovery_method": "changes-feed",
        }

        first = client.post("/sync/package", json=body, headers=AUTH)
        second = client.post("/sync/package", json=body, headers=AUTH)

        assert first.status_code == 200
        assert first.json()["created"] is True
        assert first.json()["tools"][0]["schema_source"] == "extracted"
        assert first.json()["rescore"]["tools_scored"] == 1
        assert second.json()["created"] is False
        assert second.json()["tools"][0]["tool_id"] == first.json()["tools"][0]["tool_id"]

    def test_sync_reports_needs_review(self, client):
        r = client.post("/sync/package", json={
            "package": {"name": "@acme/bare", "version": "0.1.0", "tools": [{"exportName": "run"}]},
        }, headers=AUTH)
        assert r.status_code == 200
        assert r.json()["needs_review"] == ["run"]

    def test_sync_requires_secret(self, client, fake_executor):
        body = {"package": {"name": "@acme/tools", "version": "1.0.0", "tools": [{"exportName": "formatDate"}]}}

        assert client.post("/sync/package", json=body).status_code == 401
        r = client.post("/sync/package", json=body, headers={"Authorization": "Bearer wrong"})
        assert r.status_code == 401
        assert fake_executor.calls == []

    def test_sync_checks_health_of_synced_tools(self, client, fake_executor, factory):
        fake_executor.serve_tool(FORMAT_DATE_SCHEMA)
        body = {
            "package": {
                "name": "@acme/tools",
                "version": "1.0.0",
                "tools": [{"exportName": "formatDate", "description": "Formats a date"}],
            },
        }

        r = client.post("/sync/package", json=body, headers=AUTH)

        tool_id = r.json()["tools"][0]["tool_id"]
        tool, history = asyncio.run(_load_health(factory, tool_id))
        assert tool.import_health == "HEALTHY"
        assert tool.execution_health == "HEALTHY"
        assert [h.trigger_source for h in history] == ["sync"]
        assert fake_executor.calls_to(path="/execute-tool")[0].payload["params"] == {"date": "test"}

    def test_extract_schema_unknown_tool(self, client):
        r = client.post("/tools/extract-schema", json={"packageName": "@acme/tools", "exportName": "nope"})
        assert r.status_code == 404

    def test_extract_schema(self, client, fake_executor, tool_id):
        schema = {"type": "object", "properties": {"date": {"type": "string"}, "tz": {"type": "string"}}}
        fake_executor.route("/load-and-describe", {"success": True, "tool": {"inputSchema": schema}})

        r = client.post("/tools/extract-schema", json={"packageName": "@acme/tools", "exportName": "formatDate"})

        assert r.status_code == 200
        data = r.json()
        assert data["success"] is True
        assert data["tool_id"] == tool_id
        assert data["input_schema"] == schema

    def test_health_check_and_stats(self, client, fake_executor, tool_id):
        fake_executor.serve_tool(FORMAT_DATE_SCHEMA)

        r = client.post(f"/tools/{tool_id}/health-check")
        assert r.status_code == 200
        assert r.json()["overall_status"] == "HEALTHY"

        stats = client.get("/stats/health").json()
        assert stats["total"] == 1
        assert stats["import"]["HEALTHY"] == 1
        assert stats["execution"]["HEALTHY"] == 1
        assert stats["never_checked"] == 0
        assert stats["checks"]["total"] == 1
        assert stats["broken_tools"] == []

    def test_health_check_unknown_tool(self, client):
        assert client.post("/tools/tool-missing/health-check").status_code == 404


class TestCronRoutes:

    def test_requires_secret(self, client):
        assert client.post("/cron/health-sweep").status_code == 401
        assert client.post("/cron/rescore", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_sweep(self, client, fake_executor, tool_id):
        fake_executor.serve_tool(FORMAT_DATE_SCHEMA)

        r = client.post("/cron/health-sweep", headers={"Authorization": f"Bearer {CRON_SECRET}"})

        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 1
        assert data["healthy"] == 1
        assert data["rescore"]["tools_scored"] == 1

    def test_rescore(self, client, tool_id):
        r = client.post("/cron/rescore", headers={"Authorization": f"Bearer {CRON_SECRET}"})
        assert r.status_code == 200
        assert r.json()["tools_scored"] == 1


# ══════════════════════════════════════════════════════════════════
# MCP
# ══════════════════════════════════════════════════════════════════

class TestMcpRoutes:

    @pytest.fixture
    def collection(self, factory, tool_id):
        return asyncio.run(_seed_owner(factory, tool_ids=[tool_id]))

    def test_http_tools_list(self, client, collection):
        r = client.post("/mcp/alice/dev-tools/http", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})

        assert r.status_code == 200
        assert r.json()["result"]["tools"][0]["name"] == "acme-tools--formatDate"

    def test_sse_sends_one_event(self, client, collection):
        r = client.post("/mcp/alice/dev-tools/sse", json={"jsonrpc": "2.0", "id": 1, "method": "initialize"})

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")
        assert r.text.startswith("data: ")
        assert r.text.count("data: ") == 1
        assert '"serverInfo"' in r.text

    def test_tools_call(self, client, fake_executor, collection):
        fake_executor.route("/execute-tool", {"success": True, "output": "Jan 2, 2024"})

        r = client.post("/mcp/alice/dev-tools/http", json={
            "jsonrpc": "2.0", "id": 2, "method": "tools/call",
            "params": {"name": "acme-tools--formatDate", "arguments": {"date": "2024-01-02"}},
        })

        assert r.json()["result"]["content"][0]["text"] == "Jan 2, 2024"

    def test_unknown_collection(self, client):
        r = client.post("/mcp/bob/nothing/http", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        assert r.status_code == 404
        assert r.json()["error"]["code"] == -32001

    def test_invalid_transport(self, client, collection):
        r = client.post("/mcp/alice/dev-tools/ws", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert r.status_code == 400
        assert r.json()["error"]["code"] == -32001

    def test_parse_error(self, client, collection):
        r = client.post(
            "/mcp/alice/dev-tools/http", content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert r.status_code == 400
        assert r.json()["error"]["code"] == -32700

    def test_get_server_info(self, client, collection):
        r = client.get("/mcp/alice/dev-tools/http")
        assert r.status_code == 200
        assert r.json()["name"] == "Toolhub: Dev Tools"
        assert r.json()["endpoint"] == "/mcp/alice/dev-tools/http"

    def test_get_server_info_sse(self, client, collection):
        r = client.get("/mcp/alice/dev-tools/sse")
        assert r.headers["content-type"].startswith("text/event-stream")
        assert r.text.startswith("data: ")
        assert '"transport": "sse"' in r.text

    def test_get_errors(self, client):
        assert client.get("/mcp/alice/dev-tools/ws").status_code == 400
        assert client.get("/mcp/bob/nothing/http").status_code == 404


# ══════════════════════════════════════════════════════════════════
# CLIENT DISCONNECT
# ══════════════════════════════════════════════════════════════════

class _GoneRequest:
    """Stands in for a Starlette request whose client has already disconnected."""

    class url:
        path = "/tools/execute"

    async def is_disconnected(self):
        return True


class TestClientDisconnect:

    @pytest.mark.asyncio
    async def test_in_flight_call_is_cancelled(self, monkeypatch):
        from toolhub.api import deps

        monkeypatch.setattr(deps, "DISCONNECT_POLL_SECONDS", 0.01)
        cancelled = asyncio.Event()

        async def slow_executor_call():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(deps.ClientDisconnected):
            await deps.run_until_disconnected(_GoneRequest(), slow_executor_call())
        await asyncio.wait_for(cancelled.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_result_is_returned_when_connected(self):
        from toolhub.api import deps

        class _Connected(_GoneRequest):
            async def is_disconnected(self):
                return False

        async def quick():
            return "done"

        assert await deps.run_until_disconnected(_Connected(), quick()) == "done"
