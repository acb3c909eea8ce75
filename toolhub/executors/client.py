"""
Executor Client — one JSON-over-HTTP transport for every executor.
Speaks the executor contract (load-and-describe, list-exports, health, execute-tool)
to the shared default sandbox or a custom executor, and classifies every failure
into a stable ExecutorErrorType.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from toolhub.errors import ExecutorError, ExecutorErrorType
from toolhub.executors.models import (
    ExecutionOutput, ExportListing, HealthProbeResult, IntrospectionResult, ToolRef,
)

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
DESCRIBE_PATH = "/load-and-describe"
LIST_EXPORTS_PATH = "/list-exports"
EXECUTE_PATH = "/execute-tool"

HEALTHY_STATUSES = ("ok", "degraded")


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err)
        if err:
            return str(err)
    return fallback


class ExecutorClient:
    """
    Async client shared across requests. Holds one httpx connection pool; every
    call carries its own timeout, enforced both by httpx and by an outer asyncio
    deadline so an executor that never answers always surfaces as TIMEOUT.

    Usage:
        client = ExecutorClient(default_url="https://sandbox.example.com")
        schema = await client.introspect("@acme/tools", "formatDate", "1.0.0", {})
        result = await client.execute(None, None, ToolRef(...), {"date": "x"}, {}, timeout=30)
        await client.close()
    """

    def __init__(
        self,
        default_url: str,
        default_api_key: Optional[str] = None,
        health_timeout: float = 5.0,
        introspect_timeout: float = 10.0,
        list_exports_timeout: float = 15.0,
        execute_timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.default_url = default_url.rstrip("/")
        self._default_api_key = default_api_key
        self.health_timeout = health_timeout
        self.introspect_timeout = introspect_timeout
        self.list_exports_timeout = list_exports_timeout
        self.execute_timeout = execute_timeout
        self._client = httpx.AsyncClient(transport=transport, follow_redirects=False)

    async def close(self) -> None:
        await self._client.aclose()

    # ── Transport ─────────────────────────────────────────────────

    def _resolve(self, base_url: Optional[str], api_key: Optional[str]) -> Tuple[str, Optional[str]]:
        if base_url is None:
            return self.default_url, self._default_api_key
        return base_url.rstrip("/"), api_key

    @staticmethod
    def _headers(api_key: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        api_key: Optional[str],
        timeout: float,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], float]:
        """Send one request and return (json body, duration_ms) or raise ExecutorError."""
        start = time.monotonic()
        try:
            resp = await asyncio.wait_for(
                self._client.request(
                    method, url, json=payload, headers=self._headers(api_key), timeout=timeout,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"[EXECUTOR] {method} {url} timed out after {timeout:g}s")
            raise ExecutorError(
                ExecutorErrorType.TIMEOUT, f"Executor did not respond within {timeout:g}s",
                duration_ms=_elapsed_ms(start),
            )
        except httpx.TransportError as e:
            logger.warning(f"[EXECUTOR] {method} {url} unreachable: {e}")
            raise ExecutorError(
                ExecutorErrorType.NETWORK, f"Cannot reach executor: {e}",
                duration_ms=_elapsed_ms(start),
            )

        duration_ms = _elapsed_ms(start)
        logger.debug(f"[EXECUTOR] {method} {url} -> {resp.status_code} in {duration_ms}ms")
        try:
            data = resp.json()
        except ValueError:
            data = None

        # An executor-level envelope means the tool (not the transport) failed
        if isinstance(data, dict) and data.get("success") is False:
            raise ExecutorError(
                ExecutorErrorType.EXECUTION_FAILURE,
                _error_message(data, f"HTTP {resp.status_code}"),
                status_code=resp.status_code, duration_ms=duration_ms,
            )
        if 400 <= resp.status_code < 500:
            raise ExecutorError(
                ExecutorErrorType.HTTP_4XX,
                _error_message(data, f"Executor rejected request: HTTP {resp.status_code}"),
                status_code=resp.status_code, duration_ms=duration_ms,
            )
        if resp.status_code >= 500:
            raise ExecutorError(
                ExecutorErrorType.HTTP_5XX,
                _error_message(data, f"Executor error: HTTP {resp.status_code}"),
                status_code=resp.status_code, duration_ms=duration_ms,
            )
        if not isinstance(data, dict):
            raise ExecutorError(
                ExecutorErrorType.INVALID_RESPONSE, "Executor returned a non-JSON-object body",
                status_code=resp.status_code, duration_ms=duration_ms,
            )
        return data, duration_ms

    # ── Operations ────────────────────────────────────────────────

    async def introspect(
        self,
        package_name: str,
        export_name: str,
        version: str,
        env: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> IntrospectionResult:
        """Describe a tool without executing it. Default sandbox only."""
        data, duration_ms = await self._request(
            "POST", f"{self.default_url}{DESCRIBE_PATH}", self._default_api_key,
            timeout or self.introspect_timeout,
            payload={
                "packageName": package_name,
                "name": export_name,
                "exportName": export_name,
                "version": version,
                "env": env or {},
            },
        )
        tool = data.get("tool")
        if not isinstance(tool, dict):
            raise ExecutorError(
                ExecutorErrorType.INVALID_RESPONSE, "Executor response is missing the tool description",
                duration_ms=duration_ms,
            )
        schema = tool.get("inputSchema")
        return IntrospectionResult(
            input_schema=schema if isinstance(schema, dict) else {},
            description=tool.get("description") or "",
            duration_ms=duration_ms,
        )

    async def list_exports(
        self,
        package_name: str,
        version: str,
        env: Optional[Dict[str, Any]] = None,
    ) -> ExportListing:
        """List a package's exports and which of them are valid tools. Default sandbox only."""
        data, _ = await self._request(
            "POST", f"{self.default_url}{LIST_EXPORTS_PATH}", self._default_api_key,
            self.list_exports_timeout,
            payload={"packageName": package_name, "version": version, "env": env or {}},
        )
        return ExportListing(exports=data.get("exports") or [], tools=data.get("tools") or [])

    async def health_check(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> HealthProbeResult:
        url, key = self._resolve(base_url, api_key)
        data, duration_ms = await self._request(
            "GET", f"{url}{HEALTH_PATH}", key, timeout or self.health_timeout,
        )
        status = str(data.get("status", "unknown"))
        version = data.get("version")
        return HealthProbeResult(
            healthy=status in HEALTHY_STATUSES,
            status=status,
            version=str(version) if version is not None else None,
            response=data,
            duration_ms=duration_ms,
        )

    async def execute(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        tool_ref: ToolRef,
        args: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionOutput:
        """Invoke a tool. `base_url=None` targets the default sandbox."""
        url, key = self._resolve(base_url, api_key)
        data, duration_ms = await self._request(
            "POST", f"{url}{EXECUTE_PATH}", key, timeout or self.execute_timeout,
            payload={
                "packageName": tool_ref.package_name,
                "name": tool_ref.export_name,
                "exportName": tool_ref.export_name,
                "version": tool_ref.version,
                "params": args or {},
                "env": env or {},
            },
        )
        if "error" in data and "output" not in data and data.get("success") is not True:
            raise ExecutorError(
                ExecutorErrorType.EXECUTION_FAILURE, _error_message(data, "Tool execution failed"),
                duration_ms=duration_ms,
            )
        reported = data.get("executionTimeMs")
        return ExecutionOutput(
            output=data.get("output"),
            duration_ms=float(reported) if isinstance(reported, (int, float)) else duration_ms,
        )
