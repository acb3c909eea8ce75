"""
MCP Protocol Gateway — JSON-RPC 2.0 over HTTP and SSE, scoped to one public
collection. Stateless per request: every call loads (or reuses a cached
snapshot of) the collection and answers independently.

Methods: initialize, tools/list, tools/call, notifications/initialized, ping.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import async_sessionmaker

from toolhub.cache.cache_layer import CacheLayer
from toolhub.db.collection_repository import CollectionRepository
from toolhub.executors.config import ExecutorConfig, describe_executor
from toolhub.executors.models import ExecutionErrorCode, ToolRef
from toolhub.executors.router import ExecutorRouter

logger = logging.getLogger(__name__)

JsonRpcId = Union[str, int, None]

# ── JSON-RPC error codes ──────────────────────────────────────────────────────
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
COLLECTION_NOT_FOUND = -32001  # also used for an invalid transport

TRANSPORTS = ("http", "sse")
TOOL_NAME_SEPARATOR = "--"
MAX_TOOL_NAME_LENGTH = 64

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def rpc_result(request_id: JsonRpcId, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(request_id: JsonRpcId, code: int, message: str,
              data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def parse_request_body(raw: bytes) -> Dict[str, Any]:
    """Decode a JSON-RPC request body. Raises JsonRpcError before any lookup."""
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise JsonRpcError(PARSE_ERROR, "Parse error")
    if not isinstance(body, dict) or not isinstance(body.get("method"), str):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request")
    return body


def mcp_tool_name(package_name: str, export_name: str) -> str:
    """`@acme/tools` + `formatDate` -> `acme-tools--formatDate` (MCP-safe charset)."""
    package_part = _INVALID_NAME_CHARS.sub("_", package_name.lstrip("@").replace("/", "-"))
    export_part = _INVALID_NAME_CHARS.sub("_", export_name)
    return f"{package_part}{TOOL_NAME_SEPARATOR}{export_part}"[:MAX_TOOL_NAME_LENGTH]


def unique_tool_names(refs: List[Tuple[str, str]]) -> List[str]:
    """
    MCP names for (package, export) pairs in collection order. Truncation and
    charset folding can map two tools to one name; later ones get `_2`, `_3`, ...
    """
    taken: Set[str] = set()
    names: List[str] = []
    for package_name, export_name in refs:
        name = base = mcp_tool_name(package_name, export_name)
        n = 2
        while name in taken:
            suffix = f"_{n}"
            name = base[:MAX_TOOL_NAME_LENGTH - len(suffix)] + suffix
            n += 1
        taken.add(name)
        names.append(name)
    return names


def format_tool_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, indent=2, default=str)


# ── Collection snapshot ───────────────────────────────────────────────────────

class McpToolEntry(BaseModel):
    name: str
    package_name: str
    export_name: str
    version: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = None
    env: Dict[str, Any] = Field(default_factory=dict, repr=False)

    def to_mcp(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description or f"{self.export_name} from {self.package_name}",
            "inputSchema": self.input_schema or {"type": "object", "properties": {}},
        }


class CollectionSnapshot(BaseModel):
    id: str
    username: str
    slug: str
    name: str
    description: Optional[str] = None
    executor: Optional[ExecutorConfig] = None
    tools: List[McpToolEntry] = Field(default_factory=list)

    def find_tool(self, name: str) -> Optional[McpToolEntry]:
        return next((t for t in self.tools if t.name == name), None)


class MCPGateway:
    """
    Usage:
        gateway = MCPGateway(session_factory, router, cache, db_timeout=10)
        snapshot = await gateway.load_collection("alice", "dev-tools")
        response = await gateway.handle(snapshot, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        router: ExecutorRouter,
        cache: Optional[CacheLayer] = None,
        db_timeout: float = 10.0,
        server_version: str = "1.0.0",
        protocol_version: str = "2024-11-05",
    ):
        self._session_factory = session_factory
        self._router = router
        self._cache = cache
        self.db_timeout = db_timeout
        self.server_version = server_version
        self.protocol_version = protocol_version

    # ── Store access ──────────────────────────────────────────────

    async def _fetch_collection(self, username: str, slug: str) -> Optional[CollectionSnapshot]:
        async with self._session_factory() as session:
            repo = CollectionRepository(session)
            collection = await repo.get_public(username, slug)
            if collection is None:
                return None
            tools = await repo.list_tools(collection.id)
            names = unique_tool_names([(tool.package.name, tool.export_name) for tool in tools])
            entries = [
                McpToolEntry(
                    name=name,
                    package_name=tool.package.name,
                    export_name=tool.export_name,
                    version=tool.package.version,
                    description=tool.description or "",
                    input_schema=tool.input_schema,
                    env=dict(tool.package.env or {}),
                )
                for name, tool in zip(names, tools)
            ]
            return CollectionSnapshot(
                id=collection.id, username=collection.username, slug=collection.slug,
                name=collection.name, description=collection.description,
                executor=CollectionRepository.executor_config(collection), tools=entries,
            )

    async def load_collection(self, username: str, slug: str) -> Optional[CollectionSnapshot]:
        """Public collection by owner and slug. Raises JsonRpcError(-32603) on store timeout."""
        cache_key = f"{username}/{slug}"
        if self._cache is not None:
            cached = await self._cache.get("collections", cache_key)
            if cached is not None:
                return cached
        try:
            snapshot = await asyncio.wait_for(self._fetch_collection(username, slug), timeout=self.db_timeout)
        except asyncio.TimeoutError:
            logger.error(f"[MCP] Collection lookup for {cache_key} timed out after {self.db_timeout:g}s")
            raise JsonRpcError(INTERNAL_ERROR, f"Database query timed out after {self.db_timeout:g}s")
        if snapshot is not None and self._cache is not None:
            await self._cache.set("collections", cache_key, snapshot)
        return snapshot

    # ── Server info ───────────────────────────────────────────────

    def server_name(self, snapshot: CollectionSnapshot) -> str:
        return f"Toolhub: {snapshot.name}"

    def server_info(self, snapshot: CollectionSnapshot, transport: str, base_path: str = "/mcp") -> Dict[str, Any]:
        return {
            "type": "server_info",
            "name": self.server_name(snapshot),
            "description": snapshot.description,
            "protocol": "mcp",
            "transport": transport,
            "endpoint": f"{base_path}/{snapshot.username}/{snapshot.slug}/{transport}",
            "tools": len(snapshot.tools),
        }

    # ── Dispatch ──────────────────────────────────────────────────

    async def handle(self, snapshot: CollectionSnapshot, body: Dict[str, Any]) -> Dict[str, Any]:
        request_id = body.get("id")
        method = body.get("method")
        try:
            if method == "initialize":
                return rpc_result(request_id, self._initialize(snapshot))
            if method == "tools/list":
                return rpc_result(request_id, {"tools": [t.to_mcp() for t in snapshot.tools]})
            if method == "tools/call":
                return rpc_result(request_id, await self._call_tool(snapshot, body.get("params")))
            if method in ("notifications/initialized", "ping"):
                return rpc_result(request_id, {})
            return rpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        except JsonRpcError as e:
            return rpc_error(request_id, e.code, e.message, e.data)

    def _initialize(self, snapshot: CollectionSnapshot) -> Dict[str, Any]:
        return {
            "protocolVersion": self.protocol_version,
            "serverInfo": {"name": self.server_name(snapshot), "version": self.server_version},
            "capabilities": {"tools": {}},
            "instructions": snapshot.description or "",
        }

    async def _call_tool(self, snapshot: CollectionSnapshot, params: Any) -> Dict[str, Any]:
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params: 'name' is required")
        name = params["name"]
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params: 'arguments' must be an object")
        if TOOL_NAME_SEPARATOR not in name:
            raise JsonRpcError(INVALID_PARAMS, f"Invalid tool name: {name}")

        entry = snapshot.find_tool(name)
        if entry is None:
            raise JsonRpcError(INVALID_PARAMS, f"Tool not found in collection: {name}")

        ref = ToolRef(package_name=entry.package_name, export_name=entry.export_name, version=entry.version)
        result = await self._router.route(snapshot.executor, ref, arguments, entry.env)

        if result.success:
            return {"content": [{"type": "text", "text": format_tool_output(result.output)}]}
        if result.error_code == ExecutionErrorCode.EXECUTION_FAILURE:
            return {"content": [{"type": "text", "text": f"Error: {result.error}"}], "isError": True}

        logger.warning(
            f"[MCP] {snapshot.username}/{snapshot.slug} {name} via {describe_executor(snapshot.executor)}: "
            f"{result.error_code.value if result.error_code else 'error'}"
        )
        raise JsonRpcError(
            INTERNAL_ERROR,
            result.error or "Executor error",
            data={"errorCode": result.error_code.value if result.error_code else None,
                  "executor": result.executor},
        )


def sse_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"
