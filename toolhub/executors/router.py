"""
Executor Router — picks the backend for a live invocation and maps every
transport failure onto a stable error code for the agent loop.
"""

import logging
from typing import Any, Dict, Optional

from toolhub.errors import ExecutorError, ExecutorErrorType
from toolhub.executors.client import ExecutorClient
from toolhub.executors.config import ExecutorConfig, ExecutorType, describe_executor
from toolhub.executors.models import ExecutionErrorCode, ExecutionResult, ToolRef

logger = logging.getLogger(__name__)


_ERROR_CODES = {
    ExecutorErrorType.NETWORK: ExecutionErrorCode.EXECUTOR_UNREACHABLE,
    ExecutorErrorType.TIMEOUT: ExecutionErrorCode.EXECUTOR_TIMEOUT,
    ExecutorErrorType.HTTP_4XX: ExecutionErrorCode.EXECUTOR_REJECTED,
    ExecutorErrorType.HTTP_5XX: ExecutionErrorCode.EXECUTOR_REJECTED,
    ExecutorErrorType.INVALID_RESPONSE: ExecutionErrorCode.EXECUTOR_REJECTED,
    ExecutorErrorType.EXECUTION_FAILURE: ExecutionErrorCode.EXECUTION_FAILURE,
}


def error_code_for(error: ExecutorError) -> ExecutionErrorCode:
    return _ERROR_CODES[error.error_type]


class ExecutorRouter:
    """
    Routes to the shared sandbox for `default` (or absent) configs and to the
    configured URL for `custom_url` configs. A custom executor is never
    re-verified here and never falls back to the sandbox on failure.
    """

    def __init__(self, client: ExecutorClient, interactive_timeout: float = 300.0):
        self._client = client
        self.interactive_timeout = interactive_timeout

    async def route(
        self,
        executor_config: Optional[ExecutorConfig],
        tool_ref: ToolRef,
        args: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        executor = describe_executor(executor_config)
        budget = timeout or self.interactive_timeout

        if executor_config is not None and executor_config.type == ExecutorType.CUSTOM_URL.value:
            base_url, api_key = executor_config.url, executor_config.api_key
        else:
            base_url, api_key = None, None

        try:
            result = await self._client.execute(base_url, api_key, tool_ref, args, env, timeout=budget)
        except ExecutorError as e:
            code = error_code_for(e)
            logger.warning(f"[ROUTER] {tool_ref} via {executor} failed: {code.value} ({e.message})")
            return ExecutionResult(
                success=False, error=e.message, error_code=code,
                duration_ms=e.duration_ms, executor=executor,
            )

        logger.info(f"[ROUTER] {tool_ref} via {executor} ok in {result.duration_ms}ms")
        return ExecutionResult(
            success=True, output=result.output, duration_ms=result.duration_ms, executor=executor,
        )
