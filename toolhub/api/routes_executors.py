"""
Toolhub — Executor API Routes
Custom executor verification and direct tool execution through the router.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from toolhub.api.deps import (
    ClientDisconnected, client_closed_response, get_router, get_settings, get_verifier,
    run_until_disconnected,
)
from toolhub.config.settings import Settings
from toolhub.db.collection_repository import AgentRepository, CollectionRepository
from toolhub.db.package_repository import ToolRepository
from toolhub.errors import NotFoundError, RegistryValidationError
from toolhub.executors.config import ExecutorConfig, resolve_executor_config
from toolhub.executors.models import ExecutionErrorCode, ToolRef
from toolhub.executors.router import ExecutorRouter
from toolhub.executors.verification import ExecutorVerifier

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request Models ────────────────────────────────────────────────

class VerifyExecutorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    api_key: Optional[str] = Field(default=None, alias="apiKey", repr=False)


class ExecuteToolRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_id: Optional[str] = Field(default=None, alias="toolId")
    package_name: Optional[str] = Field(default=None, alias="packageName")
    export_name: Optional[str] = Field(default=None, alias="exportName")
    params: Dict[str, Any] = Field(default_factory=dict)
    env: Dict[str, Any] = Field(default_factory=dict, repr=False)
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    collection_id: Optional[str] = Field(default=None, alias="collectionId")
    timeout_seconds: Optional[float] = Field(default=None, alias="timeoutSeconds", gt=0)


# Router error code -> HTTP status for the direct execution API
_STATUS_FOR_ERROR = {
    ExecutionErrorCode.EXECUTOR_UNREACHABLE: 502,
    ExecutionErrorCode.EXECUTOR_REJECTED: 502,
    ExecutionErrorCode.EXECUTOR_TIMEOUT: 504,
    ExecutionErrorCode.EXECUTION_FAILURE: 422,
}


# ══════════════════════════════════════════════════════════════════
# VERIFICATION
# ══════════════════════════════════════════════════════════════════

@router.post("/executors/verify", tags=["Executors"])
async def verify_executor(
    req: VerifyExecutorRequest,
    verifier: ExecutorVerifier = Depends(get_verifier),
):
    """Health probe + test execution against a custom executor. Never cached."""
    result = await verifier.verify(req.url, req.api_key)
    return JSONResponse(
        content=result.model_dump(mode="json", by_alias=True),
        headers={"Cache-Control": "no-store"},
    )


# ══════════════════════════════════════════════════════════════════
# EXECUTION
# ══════════════════════════════════════════════════════════════════

async def _resolve_invocation(request: Request, req: ExecuteToolRequest):
    """Look up the tool and the owning entities' executor configs in one short-lived session."""
    if not req.tool_id and not (req.package_name and req.export_name):
        raise RegistryValidationError("toolId or packageName + exportName is required")

    async with request.app.state.session_factory() as session:
        tools = ToolRepository(session)
        if req.tool_id:
            tool = await tools.get(req.tool_id)
        else:
            tool = await tools.get_by_ref(req.package_name, req.export_name)
        if tool is None:
            raise NotFoundError("Tool not found")

        agent_config: Optional[ExecutorConfig] = None
        collection_config: Optional[ExecutorConfig] = None
        if req.agent_id:
            agent = await AgentRepository(session).get(req.agent_id)
            if agent is None:
                raise NotFoundError(f"Agent not found: {req.agent_id}")
            agent_config = AgentRepository.executor_config(agent)
        if req.collection_id:
            collection = await CollectionRepository(session).get(req.collection_id)
            if collection is None:
                raise NotFoundError(f"Collection not found: {req.collection_id}")
            collection_config = CollectionRepository.executor_config(collection)

        package = tool.package
        ref = ToolRef(package_name=package.name, export_name=tool.export_name, version=package.version)
        # Request env overrides the package-level env
        env = {**(package.env or {}), **req.env}
    return ref, env, resolve_executor_config(agent_config, collection_config)


@router.post("/tools/execute", tags=["Tools"])
async def execute_tool(
    req: ExecuteToolRequest,
    request: Request,
    executor_router: ExecutorRouter = Depends(get_router),
    app_settings: Settings = Depends(get_settings),
):
    """Execute a registered tool via the resolved executor (agent → collection → default)."""
    ref, env, executor_config = await _resolve_invocation(request, req)
    timeout = min(req.timeout_seconds or app_settings.interactive_timeout_seconds,
                  app_settings.interactive_timeout_seconds)

    try:
        result = await run_until_disconnected(
            request, executor_router.route(executor_config, ref, req.params, env, timeout=timeout),
        )
    except ClientDisconnected:
        return client_closed_response()

    status = 200 if result.success else _STATUS_FOR_ERROR.get(result.error_code, 502)
    return JSONResponse(status_code=status, content=result.model_dump(mode="json"))
