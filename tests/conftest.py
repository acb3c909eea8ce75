"""
Shared fixtures for the Toolhub test suite.
"""
import asyncio
import json
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Set env vars before any imports that read them
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///toolhub-test.db")
os.environ.setdefault("EXECUTOR_URL", "http://sandbox.test")
os.environ.setdefault("CRON_SECRET", "")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from toolhub.db.base import Base  # noqa: E402
from toolhub.db import models  # noqa: E402,F401
from toolhub.executors.client import ExecutorClient  # noqa: E402

SANDBOX_HOST = "sandbox.test"
SANDBOX_URL = f"http://{SANDBOX_HOST}"

HANG = object()

Responder = Union[Dict[str, Any], httpx.Response, Callable[[Optional[dict]], Any], object]


# ── Fake executor ────────────────────────────────────────────────

@dataclass
class RecordedCall:
    method: str
    host: str
    path: str
    payload: Optional[Dict[str, Any]]
    headers: Dict[str, str] = field(default_factory=dict)


class FakeExecutor:
    """
    Programmable executor behind an httpx.MockTransport.

    Routes are keyed by (host, path). A responder is a JSON dict, an
    httpx.Response, a callable taking the JSON payload and returning either of
    those or a (status, body) tuple, or HANG to never answer. A host with no
    route for the requested path behaves like a refused connection.
    """

    def __init__(self):
        self.calls: List[RecordedCall] = []
        self._routes: Dict[Tuple[str, str], Responder] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay = 0.0

    def route(self, path: str, responder: Responder, host: str = SANDBOX_HOST) -> None:
        self._routes[(host, path)] = responder

    def hang(self, path: str, host: str = SANDBOX_HOST) -> None:
        self._routes[(host, path)] = HANG

    def clear(self) -> None:
        """Drop every route; later calls fail like an executor outage."""
        self._routes.clear()

    def calls_to(self, host: Optional[str] = None, path: Optional[str] = None) -> List[RecordedCall]:
        return [
            c for c in self.calls
            if (host is None or c.host == host) and (path is None or c.path == path)
        ]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content) if request.content else None
        self.calls.append(RecordedCall(
            method=request.method, host=request.url.host, path=request.url.path,
            payload=payload, headers=dict(request.headers),
        ))
        responder = self._routes.get((request.url.host, request.url.path))
        if responder is None:
            raise httpx.ConnectError("Connection refused", request=request)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if responder is HANG:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
            result = responder(payload) if callable(responder) else responder
        finally:
            self.in_flight -= 1

        if isinstance(result, httpx.Response):
            return result
        if isinstance(result, tuple):
            status, body = result
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=result)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # ── Common sandbox behaviour ─────────────────────────────────

    def serve_tool(
        self,
        input_schema: Dict[str, Any],
        output: Any = None,
        description: str = "",
        host: str = SANDBOX_HOST,
    ) -> None:
        """A sandbox where every tool loads with `input_schema` and executes successfully."""
        self.route("/health", {"status": "ok", "version": "1.4.0"}, host=host)
        self.route(
            "/load-and-describe",
            {"success": True, "tool": {"inputSchema": input_schema, "description": description}},
            host=host,
        )
        self.route(
            "/execute-tool",
            {"success": True, "output": output if output is not None else {"ok": True}, "executionTimeMs": 12},
            host=host,
        )


@pytest.fixture
def fake_executor():
    """Fresh FakeExecutor with no routes."""
    return FakeExecutor()


@pytest_asyncio.fixture
async def executor_client(fake_executor):
    """ExecutorClient wired to the fake executor, default sandbox at http://sandbox.test."""
    client = ExecutorClient(default_url=SANDBOX_URL, transport=fake_executor.transport())
    yield client
    await client.close()


# ── Database ─────────────────────────────────────────────────────

@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite engine; one connection per checkout so sessions never share one."""
    return create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'toolhub.db'}", poolclass=NullPool)


@pytest_asyncio.fixture
async def session_factory(db_engine):
    """Create a fresh test DB with tables and yield a session factory."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)

    # Cleanup: drop tables after test
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await db_engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Seed helpers ─────────────────────────────────────────────────

FORMAT_DATE_SCHEMA = {
    "type": "object",
    "properties": {"date": {"type": "string", "description": "ISO date to format"}},
    "required": ["date"],
}


async def seed_tool(
    session_factory,
    package_name: str = "@acme/tools",
    export_name: str = "formatDate",
    version: str = "1.0.0",
    description: str = "Formats a date",
    input_schema: Optional[Dict[str, Any]] = None,
    parameters: Optional[List[Dict[str, Any]]] = None,
    downloads: Optional[int] = None,
    env: Optional[Dict[str, Any]] = None,
) -> str:
    """Insert one package + tool directly and return the tool id."""
    from toolhub.db.package_repository import PackageRepository, ToolRepository
    from toolhub.schema.extraction import json_schema_to_parameters

    schema = input_schema if input_schema is not None else FORMAT_DATE_SCHEMA
    async with session_factory() as session:
        async with session.begin():
            package, _ = await PackageRepository(session).upsert(
                package_name, version=version, downloads_last_month=downloads, env=env or {},
            )
            tool, _ = await ToolRepository(session).upsert(
                package.id, export_name,
                description=description,
                input_schema=schema,
                schema_source="extracted",
                parameters=parameters if parameters is not None else json_schema_to_parameters(schema),
            )
            return tool.id
