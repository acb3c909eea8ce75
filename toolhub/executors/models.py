"""
Wire-level and result models shared by the executor client, router, and verifier.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ToolRef(BaseModel):
    """Identifies one exported callable of one npm package."""
    package_name: str
    export_name: str
    version: str = "latest"

    def __str__(self) -> str:
        return f"{self.package_name}/{self.export_name}@{self.version}"


class IntrospectionResult(BaseModel):
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    duration_ms: float = 0.0


class HealthProbeResult(BaseModel):
    healthy: bool = False
    status: str = "unknown"
    version: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    duration_ms: float = 0.0


class ExecutionOutput(BaseModel):
    output: Any = None
    duration_ms: float = 0.0


class ExportListing(BaseModel):
    exports: List[str] = Field(default_factory=list)
    tools: List[Dict[str, Any]] = Field(default_factory=list)


class ExecutionErrorCode(str, Enum):
    EXECUTOR_UNREACHABLE = "executor_unreachable"
    EXECUTOR_TIMEOUT = "executor_timeout"
    EXECUTOR_REJECTED = "executor_rejected"
    EXECUTION_FAILURE = "execution_failure"


class ExecutionResult(BaseModel):
    """Outcome of a routed invocation. Never carries a raw transport exception."""
    success: bool = False
    output: Any = None
    error: Optional[str] = None
    error_code: Optional[ExecutionErrorCode] = None
    duration_ms: float = 0.0
    executor: str = ""


# ── Verification ──────────────────────────────────────────────────────────────

class HealthCheckSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    healthy: bool
    status: Optional[str] = None
    version: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ExecutionProbeSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    duration_ms: float = Field(default=0.0, serialization_alias="durationMs")
    error: Optional[str] = None


class VerificationResult(BaseModel):
    """Point-in-time verdict on a custom executor. Not persisted."""
    model_config = ConfigDict(populate_by_name=True)

    valid: bool = False
    health_check: Optional[HealthCheckSummary] = Field(default=None, serialization_alias="healthCheck")
    test_execution: Optional[ExecutionProbeSummary] = Field(default=None, serialization_alias="testExecution")
    errors: List[str] = Field(default_factory=list)
