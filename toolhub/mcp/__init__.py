"""MCP gateway — JSON-RPC access to public collections over http and sse."""
from .gateway import (
    MCPGateway, CollectionSnapshot, McpToolEntry, JsonRpcError,
    mcp_tool_name, unique_tool_names, parse_request_body, rpc_error, sse_event, TRANSPORTS,
)

__all__ = [
    "MCPGateway", "CollectionSnapshot", "McpToolEntry", "JsonRpcError",
    "mcp_tool_name", "unique_tool_names", "parse_request_body", "rpc_error", "sse_event", "TRANSPORTS",
]
