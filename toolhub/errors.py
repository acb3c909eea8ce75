"""
Error taxonomy shared by the executor client, router, scheduler, and API layer.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSPORT = "transport"                  # DNS, connection refused, network unreachable
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"                    # malformed JSON-RPC or executor response
    VALIDATION = "validation"                # bad URL, bad schema, missing field
    DOMAIN_NOT_FOUND = "domain_not_found"    # unknown package, tool, or collection
    EXECUTION_FAILURE = "execution_failure"  # the tool itself threw


class ExecutorErrorType(str, Enum):
    """Transport-level classification of a failed executor call."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    INVALID_RESPONSE = "invalid_response"
    EXECUTION_FAILURE = "execution_failure"

    @property
    def kind(self) -> ErrorKind:
        return {
            ExecutorErrorType.NETWORK: ErrorKind.TRANSPORT,
            ExecutorErrorType.TIMEOUT: ErrorKind.TIMEOUT,
            ExecutorErrorType.HTTP_4XX: ErrorKind.PROTOCOL,
            ExecutorErrorType.HTTP_5XX: ErrorKind.PROTOCOL,
            ExecutorErrorType.INVALID_RESPONSE: ErrorKind.PROTOCOL,
            ExecutorErrorType.EXECUTION_FAILURE: ErrorKind.EXECUTION_FAILURE,
        }[self]


class ExecutorError(Exception):
    """Raised by ExecutorClient when a call to an executor does not succeed."""

    def __init__(self, error_type: ExecutorErrorType, message: str,
                 status_code: Optional[int] = None, duration_ms: float = 0.0):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.status_code = status_code
        self.duration_ms = duration_ms

    @property
    def kind(self) -> ErrorKind:
        return self.error_type.kind

    def __repr__(self) -> str:
        return f"ExecutorError({self.error_type.value}, {self.message!r})"


class RegistryError(Exception):
    """Base class for domain errors surfaced by the API layer."""
    kind: ErrorKind = ErrorKind.PROTOCOL


class RegistryValidationError(RegistryError):
    kind = ErrorKind.VALIDATION


class NotFoundError(RegistryError):
    kind = ErrorKind.DOMAIN_NOT_FOUND
