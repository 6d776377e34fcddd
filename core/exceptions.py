"""
Custom exceptions for StockOrderWeb.

Exception Hierarchy:
    StockOrderWebError (base)
    ├── ParseError                 - Input could not become a valid identifier
    ├── TransportError             - Request never got an HTTP response (retried)
    │   ├── RequestTimeoutError        - Per-attempt timeout elapsed
    │   └── NetworkUnreachableError    - Connection refused, DNS failure, reset
    ├── UpstreamError              - Upstream answered, but not with success
    │   ├── AuthError                  - 401/403 (never retried)
    │   ├── RateLimitedError           - 429 (retried, honours Retry-After)
    │   ├── ClientInvalidError         - Other 4xx (never retried)
    │   ├── ServerFailureError         - 5xx (retried)
    │   ├── MalformedResponseError     - 2xx body unusable (never retried)
    │   ├── OrderFailedError           - Upstream reported the job as failed
    │   └── RetryExhaustedError        - Retries used up, wraps the last error
    └── OrchestrationError         - Job lifecycle misuse (never retried)
        ├── PollTimeoutError           - Poll budget exceeded
        ├── DuplicateSubmissionError   - Same input already has a live job
        ├── UnknownHandleError         - No job registered under the handle
        └── JobNotReadyError           - Download requested before Ready

Every exception carries a stable ErrorKind so callers can render a message
without inspecting retry counts or HTTP details.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Stable, enumerable failure kinds exposed at the core boundary."""

    # Parse errors
    UNSUPPORTED_SITE = "unsupported_site"
    ID_EXTRACTION_FAILED = "id_extraction_failed"
    UNRECOGNIZED_FORMAT = "unrecognized_format"
    SITE_INACTIVE = "site_inactive"

    # Transport errors
    TIMEOUT = "timeout"
    NETWORK_UNREACHABLE = "network_unreachable"

    # Upstream errors
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    CLIENT_INVALID = "client_invalid"
    SERVER_FAILURE = "server_failure"
    MALFORMED_RESPONSE = "malformed_response"
    ORDER_FAILED = "order_failed"
    RETRY_EXHAUSTED = "retry_exhausted"

    # Orchestration errors
    POLL_TIMEOUT = "poll_timeout"
    DUPLICATE_SUBMISSION = "duplicate_submission"
    UNKNOWN_HANDLE = "unknown_handle"
    NOT_READY = "not_ready"


PARSE_ERROR_KINDS = frozenset({
    ErrorKind.UNSUPPORTED_SITE,
    ErrorKind.ID_EXTRACTION_FAILED,
    ErrorKind.UNRECOGNIZED_FORMAT,
    ErrorKind.SITE_INACTIVE,
})


class StockOrderWebError(Exception):
    """
    Base exception for all StockOrderWeb errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    kind: Optional[ErrorKind] = None
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# PARSE ERRORS - Returned to the caller synchronously, never retried
# =============================================================================

class ParseError(StockOrderWebError):
    """
    Raw input did not normalize into a submittable identifier.

    Raised by the orchestrator when an identifier with valid=False (or an
    inactive site) is submitted. The kind is one of PARSE_ERROR_KINDS.
    """

    def __init__(self, kind: ErrorKind, raw: str = "", message: Optional[str] = None):
        if kind not in PARSE_ERROR_KINDS:
            raise ValueError(f"{kind} is not a parse error kind")
        details = {"raw": raw} if raw else {}
        super().__init__(message or f"Cannot submit input: {kind.value}", details)
        self.kind = kind
        self.raw = raw


# =============================================================================
# TRANSPORT ERRORS - No HTTP response was received
# =============================================================================

class TransportError(StockOrderWebError):
    """Request failed before an HTTP response arrived."""

    retryable = True

    def __init__(self, message: str, operation: str = "", details: Optional[Dict[str, Any]] = None):
        error_details = dict(details or {})
        if operation:
            error_details["operation"] = operation
        super().__init__(message, error_details)
        self.operation = operation


class RequestTimeoutError(TransportError):
    """A single attempt exceeded the per-attempt timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, operation: str, timeout_seconds: float):
        message = f"Upstream {operation} timed out after {timeout_seconds:.1f}s"
        super().__init__(message, operation, {"timeout_seconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class NetworkUnreachableError(TransportError):
    """Connection could not be established or was dropped."""

    kind = ErrorKind.NETWORK_UNREACHABLE

    def __init__(self, operation: str, reason: str = "Network connection failed"):
        super().__init__(f"Upstream {operation} failed: {reason}", operation)
        self.reason = reason


# =============================================================================
# UPSTREAM ERRORS - The upstream answered with something other than success
# =============================================================================

class UpstreamError(StockOrderWebError):
    """
    Base class for failures reported by the upstream API.

    Subclasses set kind and whether the failure is worth retrying.
    """

    def __init__(
        self,
        message: str,
        operation: str = "",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = dict(details or {})
        if operation:
            error_details["operation"] = operation
        if status_code is not None:
            error_details["status_code"] = status_code
        super().__init__(message, error_details)
        self.operation = operation
        self.status_code = status_code


class AuthError(UpstreamError):
    """API key rejected or lacks permission (401/403)."""

    kind = ErrorKind.AUTH


class RateLimitedError(UpstreamError):
    """
    Upstream asked us to slow down (429).

    retry_after holds the parsed Retry-After header in seconds, if any.
    """

    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(
        self,
        message: str,
        operation: str = "",
        retry_after: Optional[float] = None
    ):
        details = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, operation, 429, details)
        self.retry_after = retry_after


class ClientInvalidError(UpstreamError):
    """Request rejected as invalid (4xx other than 401/403/429)."""

    kind = ErrorKind.CLIENT_INVALID


class ServerFailureError(UpstreamError):
    """Upstream failed internally (5xx)."""

    kind = ErrorKind.SERVER_FAILURE
    retryable = True


class MalformedResponseError(UpstreamError):
    """
    Upstream returned 2xx but the body was not usable.

    Not retried: re-posting an order on a garbled acknowledgement could
    create a second order.
    """

    kind = ErrorKind.MALFORMED_RESPONSE


class OrderFailedError(UpstreamError):
    """Upstream reported the order or generation job itself as failed."""

    kind = ErrorKind.ORDER_FAILED


class RetryExhaustedError(UpstreamError):
    """
    All attempts allowed by the retry policy failed.

    Wraps the last observed error so callers can still see what went wrong.
    """

    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(self, operation: str, attempts: int, last_error: StockOrderWebError):
        message = f"Upstream {operation} failed after {attempts} attempts: {last_error.message}"
        details = {
            "attempts": attempts,
            "underlying_kind": last_error.kind.value if last_error.kind else None,
        }
        super().__init__(
            message,
            operation,
            getattr(last_error, "status_code", None),
            details
        )
        self.attempts = attempts
        self.last_error = last_error

    @property
    def underlying_kind(self) -> Optional[ErrorKind]:
        """Kind of the error observed on the final attempt."""
        return self.last_error.kind


# =============================================================================
# ORCHESTRATION ERRORS - Lifecycle misuse, returned synchronously
# =============================================================================

class OrchestrationError(StockOrderWebError):
    """Base class for job lifecycle errors."""

    def __init__(self, message: str, handle: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        error_details = dict(details or {})
        if handle:
            error_details["handle"] = handle
        super().__init__(message, error_details)
        self.handle = handle


class PollTimeoutError(OrchestrationError):
    """Job did not reach a terminal state within its poll budget."""

    kind = ErrorKind.POLL_TIMEOUT

    def __init__(self, handle: str, budget_seconds: float):
        super().__init__(
            f"Job {handle[:8]} did not finish within {budget_seconds:.1f}s",
            handle,
            {"budget_seconds": budget_seconds}
        )
        self.budget_seconds = budget_seconds


class DuplicateSubmissionError(OrchestrationError):
    """The same input already has a live (non-terminal) job."""

    kind = ErrorKind.DUPLICATE_SUBMISSION

    def __init__(self, existing_handle: str):
        super().__init__(
            f"Already being processed as job {existing_handle[:8]}",
            existing_handle
        )
        self.existing_handle = existing_handle


class UnknownHandleError(OrchestrationError):
    """No job is registered under the handle (never existed or evicted)."""

    kind = ErrorKind.UNKNOWN_HANDLE

    def __init__(self, handle: str):
        super().__init__(f"Unknown job handle: {handle}", handle)


class JobNotReadyError(OrchestrationError):
    """Download link requested for a job that is not Ready."""

    kind = ErrorKind.NOT_READY

    def __init__(self, handle: str, state: str):
        super().__init__(
            f"Job {handle[:8]} is {state}, download not available",
            handle,
            {"state": state}
        )
        self.state = state
