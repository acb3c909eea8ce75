"""
Tool Health Checker — probes one tool for import and execution health via the
default sandbox. Pure with respect to storage: it returns a ToolHealthResult and
leaves persistence to the scheduler.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from toolhub.db.models import HealthStatus
from toolhub.errors import ExecutorError, ExecutorErrorType
from toolhub.executors.client import ExecutorClient
from toolhub.executors.models import ToolRef

logger = logging.getLogger(__name__)


# ── Non-breaking errors ───────────────────────────────────────────────────────
# A tool that fails only because it lacks credentials or rejects placeholder
# input still imports and runs; it is reported HEALTHY.

_ENV_CONFIG_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"is required", r"is not set", r"missing.*environment", r"environment.*missing",
        r"api key.*required", r"api key.*not provided", r"missing.*api key", r"must be set",
        r"not found.*environment", r"please set", r"please provide", r"configure.*environment",
    )
]

_INPUT_VALIDATION_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"must have a valid.*domain", r"valid.*path", r"invalid.*url", r"invalid.*format",
        r"expected.*received", r"must be.*string", r"must be.*number", r"must be.*boolean",
        r"must be.*array", r"must be.*object", r"validation.*failed", r"does not match",
        r"too short", r"too long", r"minimum.*length", r"maximum.*length",
    )
]

# Transport outcomes say nothing about the tool itself
_ALWAYS_BREAKING = (ExecutorErrorType.TIMEOUT, ExecutorErrorType.NETWORK)


def is_environment_config_error(message: Optional[str]) -> bool:
    return bool(message) and any(p.search(message) for p in _ENV_CONFIG_PATTERNS)


def is_input_validation_error(message: Optional[str]) -> bool:
    return bool(message) and any(p.search(message) for p in _INPUT_VALIDATION_PATTERNS)


def is_non_breaking_error(error: ExecutorError) -> bool:
    if error.error_type in _ALWAYS_BREAKING:
        return False
    return is_environment_config_error(error.message) or is_input_validation_error(error.message)


# ── Test input ────────────────────────────────────────────────────────────────

PLACEHOLDERS: Dict[str, Any] = {
    "string": "test",
    "number": 1,
    "integer": 1,
    "boolean": True,
    "object": {},
    "array": [],
}


def _placeholder(type_name: Any) -> Any:
    if isinstance(type_name, list):
        type_name = next((t for t in type_name if t != "null"), "string")
    value = PLACEHOLDERS.get(type_name, "test")
    return value.copy() if isinstance(value, (dict, list)) else value


def build_test_parameters(
    input_schema: Optional[Dict[str, Any]],
    parameters: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Representative input for an execution probe: schema defaults where given,
    type placeholders for the remaining required properties.
    """
    params: Dict[str, Any] = {}
    properties = (input_schema or {}).get("properties")
    if isinstance(properties, dict) and properties:
        required = set((input_schema or {}).get("required") or [])
        for name, prop in properties.items():
            prop = prop if isinstance(prop, dict) else {}
            if "default" in prop:
                params[name] = prop["default"]
            elif name in required:
                params[name] = _placeholder(prop.get("type", "string"))
        return params

    for param in parameters or []:
        if not isinstance(param, dict) or not param.get("name"):
            continue
        if param.get("default") is not None:
            params[param["name"]] = param["default"]
        elif param.get("required"):
            params[param["name"]] = _placeholder(param.get("type", "string"))
    return params


def truncate_error(message: Optional[str], max_length: int) -> Optional[str]:
    if message is None or len(message) <= max_length:
        return message
    return message[: max(0, max_length - 3)] + "..."


# ── Results ───────────────────────────────────────────────────────────────────

class ProbeOutcome(BaseModel):
    status: HealthStatus
    error: Optional[str] = None
    time_ms: Optional[float] = None


class ToolHealthResult(BaseModel):
    tool_id: str
    import_check: ProbeOutcome
    execution_check: ProbeOutcome
    test_parameters: Dict[str, Any] = Field(default_factory=dict)

    @property
    def overall_status(self) -> HealthStatus:
        statuses = (self.import_check.status, self.execution_check.status)
        if HealthStatus.BROKEN in statuses:
            return HealthStatus.BROKEN
        if all(s == HealthStatus.HEALTHY for s in statuses):
            return HealthStatus.HEALTHY
        return HealthStatus.UNKNOWN

    @property
    def error(self) -> Optional[str]:
        return self.import_check.error or self.execution_check.error


class ToolHealthChecker:
    """
    Usage:
        checker = ToolHealthChecker(client, timeout=30, error_max_length=500)
        result = await checker.check(tool_id, ref, input_schema, parameters, env)
    """

    def __init__(self, client: ExecutorClient, timeout: float = 30.0, error_max_length: int = 500):
        self._client = client
        self.timeout = timeout
        self.error_max_length = error_max_length

    def _failure(self, e: ExecutorError) -> ProbeOutcome:
        if is_non_breaking_error(e):
            return ProbeOutcome(status=HealthStatus.HEALTHY, time_ms=e.duration_ms)
        return ProbeOutcome(
            status=HealthStatus.BROKEN,
            error=truncate_error(e.message, self.error_max_length),
            time_ms=e.duration_ms,
        )

    async def check_import(self, ref: ToolRef, env: Optional[Dict[str, Any]]) -> ProbeOutcome:
        try:
            described = await self._client.introspect(
                ref.package_name, ref.export_name, ref.version, env, timeout=self.timeout,
            )
        except ExecutorError as e:
            return self._failure(e)
        return ProbeOutcome(status=HealthStatus.HEALTHY, time_ms=described.duration_ms)

    async def check_execution(
        self, ref: ToolRef, test_parameters: Dict[str, Any], env: Optional[Dict[str, Any]],
    ) -> ProbeOutcome:
        try:
            result = await self._client.execute(
                None, None, ref, test_parameters, env, timeout=self.timeout,
            )
        except ExecutorError as e:
            return self._failure(e)
        return ProbeOutcome(status=HealthStatus.HEALTHY, time_ms=result.duration_ms)

    async def check(
        self,
        tool_id: str,
        ref: ToolRef,
        input_schema: Optional[Dict[str, Any]],
        parameters: Optional[List[Dict[str, Any]]] = None,
        env: Optional[Dict[str, Any]] = None,
    ) -> ToolHealthResult:
        import_check = await self.check_import(ref, env)
        logger.debug(f"[HEALTH] {ref} import={import_check.status.value}")

        if import_check.status != HealthStatus.HEALTHY:
            return ToolHealthResult(
                tool_id=tool_id,
                import_check=import_check,
                execution_check=ProbeOutcome(status=HealthStatus.UNKNOWN),
            )

        test_parameters = build_test_parameters(input_schema, parameters)
        execution_check = await self.check_execution(ref, test_parameters, env)
        logger.debug(f"[HEALTH] {ref} execution={execution_check.status.value}")
        return ToolHealthResult(
            tool_id=tool_id,
            import_check=import_check,
            execution_check=execution_check,
            test_parameters=test_parameters,
        )
