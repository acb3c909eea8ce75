"""
Executor Verification — the health probe + test execution handshake run before
a custom executor URL is trusted with live traffic.
"""

import logging
from typing import Optional

from toolhub.errors import ExecutorError
from toolhub.executors.client import ExecutorClient
from toolhub.executors.config import is_valid_executor_url
from toolhub.executors.models import (
    ExecutionProbeSummary, HealthCheckSummary, ToolRef, VerificationResult,
)

logger = logging.getLogger(__name__)

# Known-safe tool used for the test execution step
VERIFICATION_TOOL = ToolRef(package_name="@tpmjs/hello", export_name="helloWorldTool", version="0.0.2")
VERIFICATION_ARGS = {"includeTimestamp": True}


class ExecutorVerifier:
    """
    Stateless and side-effect free: every call probes the executor again.

    Steps:
      1. Reject syntactically invalid URLs without touching the network.
      2. Health probe. Failure is recorded but execution is still attempted.
      3. Test execution of VERIFICATION_TOOL.
      4. valid = healthy AND test succeeded AND no errors.
    """

    def __init__(
        self,
        client: ExecutorClient,
        health_timeout: float = 5.0,
        execution_timeout: float = 30.0,
        require_https: bool = False,
    ):
        self._client = client
        self.health_timeout = health_timeout
        self.execution_timeout = execution_timeout
        self.require_https = require_https

    async def verify(self, url: str, api_key: Optional[str] = None) -> VerificationResult:
        errors = []

        if not is_valid_executor_url(url):
            return VerificationResult(valid=False, errors=["Invalid URL format"])
        url = url.strip().rstrip("/")
        if self.require_https and not url.lower().startswith("https://"):
            errors.append("Custom executor URL must use HTTPS in production")

        try:
            probe = await self._client.health_check(url, api_key, timeout=self.health_timeout)
            health = HealthCheckSummary(
                healthy=probe.healthy, status=probe.status,
                version=probe.version, response=probe.response,
            )
            if not probe.healthy:
                health.error = f"Executor reported status '{probe.status}'"
                errors.append(f"Health check failed: {health.error}")
        except ExecutorError as e:
            health = HealthCheckSummary(healthy=False, error=e.message)
            errors.append(f"Health check failed ({e.error_type.value}): {e.message}")

        try:
            result = await self._client.execute(
                url, api_key, VERIFICATION_TOOL, VERIFICATION_ARGS, timeout=self.execution_timeout,
            )
            test = ExecutionProbeSummary(success=True, duration_ms=result.duration_ms)
        except ExecutorError as e:
            test = ExecutionProbeSummary(success=False, duration_ms=e.duration_ms, error=e.message)
            errors.append(f"Test execution failed ({e.error_type.value}): {e.message}")

        valid = health.healthy and test.success and not errors
        logger.info(
            f"[VERIFY] {url}: valid={valid} healthy={health.healthy} "
            f"test_success={test.success} errors={len(errors)}"
        )
        return VerificationResult(valid=valid, health_check=health, test_execution=test, errors=errors)
