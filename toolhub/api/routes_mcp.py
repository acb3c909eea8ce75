"""
Toolhub — MCP Transport Routes
GET|POST /mcp/{username}/{slug}/{transport} for transport in (http, sse).
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from toolhub.api.deps import (
    ClientDisconnected, client_closed_response, get_gateway, run_until_disconnected,
)
from toolhub.mcp.gateway import (
    COLLECTION_NOT_FOUND, TRANSPORTS, JsonRpcError, MCPGateway,
    parse_request_body, rpc_error, sse_event,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_SSE_HEADERS = {"Cache-Control": "no-cache"}


def _reply(transport: str, payload: dict, status_code: int = 200) -> Response:
    """http -> JSON body; sse -> exactly one `data:` event, then the stream ends."""
    if transport == "sse":
        return Response(
            content=sse_event(payload), status_code=status_code,
            media_type="text/event-stream", headers=_SSE_HEADERS,
        )
    return JSONResponse(content=payload, status_code=status_code)


@router.post("/mcp/{username}/{slug}/{transport}", tags=["MCP"])
async def mcp_post(
    username: str,
    slug: str,
    transport: str,
    request: Request,
    gateway: MCPGateway = Depends(get_gateway),
):
    """JSON-RPC 2.0 endpoint for a public collection."""
    if transport not in TRANSPORTS:
        return JSONResponse(
            status_code=400, content=rpc_error(None, COLLECTION_NOT_FOUND, f"Invalid transport: {transport}"),
        )

    try:
        body = parse_request_body(await request.body())
    except JsonRpcError as e:
        return _reply(transport, rpc_error(None, e.code, e.message), status_code=400)

    try:
        snapshot = await gateway.load_collection(username, slug)
    except JsonRpcError as e:
        return _reply(transport, rpc_error(body.get("id"), e.code, e.message), status_code=500)
    if snapshot is None:
        return _reply(
            transport, rpc_error(body.get("id"), COLLECTION_NOT_FOUND, "Collection not found"), status_code=404,
        )

    try:
        response = await run_until_disconnected(request, gateway.handle(snapshot, body))
    except ClientDisconnected:
        return client_closed_response()

    logger.debug(f"[MCP] {username}/{slug} {body.get('method')} via {transport}")
    return _reply(transport, response)


@router.get("/mcp/{username}/{slug}/{transport}", tags=["MCP"])
async def mcp_get(
    username: str,
    slug: str,
    transport: str,
    gateway: MCPGateway = Depends(get_gateway),
):
    """Server info for the collection (one SSE event for the sse transport)."""
    if transport not in TRANSPORTS:
        return JSONResponse(status_code=400, content={"error": f"Invalid transport: {transport}"})

    try:
        snapshot = await gateway.load_collection(username, slug)
    except JsonRpcError as e:
        return JSONResponse(status_code=500, content={"error": e.message})
    if snapshot is None:
        return JSONResponse(status_code=404, content={"error": "Collection not found"})

    return _reply(transport, gateway.server_info(snapshot, transport))
