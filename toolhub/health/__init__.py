"""Tool health — per-tool import/execution probes and the recurring sweep."""
from .checker import ToolHealthChecker, ToolHealthResult, build_test_parameters, is_non_breaking_error
from .scheduler import HealthCheckScheduler, SweepReport, ToolCheckSummary

__all__ = [
    "ToolHealthChecker", "ToolHealthResult", "build_test_parameters", "is_non_breaking_error",
    "HealthCheckScheduler", "SweepReport", "ToolCheckSummary",
]
