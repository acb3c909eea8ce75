"""Executors — transport client, executor config, routing, and verification handshake."""
from .config import (
    ExecutorType, DefaultExecutorConfig, CustomUrlExecutorConfig, ExecutorConfig,
    parse_executor_config, resolve_executor_config, describe_executor, is_valid_executor_url,
)
from .models import ToolRef, ExecutionResult, ExecutionErrorCode, VerificationResult
from .client import ExecutorClient
from .router import ExecutorRouter
from .verification import ExecutorVerifier

__all__ = [
    "ExecutorType", "DefaultExecutorConfig", "CustomUrlExecutorConfig", "ExecutorConfig",
    "parse_executor_config", "resolve_executor_config", "describe_executor",
    "is_valid_executor_url",
    "ToolRef", "ExecutionResult", "ExecutionErrorCode", "VerificationResult",
    "ExecutorClient", "ExecutorRouter", "ExecutorVerifier",
]
