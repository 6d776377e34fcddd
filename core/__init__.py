"""
Core module for StockOrderWeb.

Contains fundamental infrastructure components:
- exceptions: Error taxonomy (parse, transport, upstream, orchestration)
- retry: RetryPolicy and tenacity wiring
- throttle: Minimum-interval request throttle
- api_client: ResilientClient for the upstream API (import directly from
  core.api_client; it depends on models, which depend on this package)
"""

from .exceptions import (
    ErrorKind,
    StockOrderWebError,
    ParseError,
    TransportError,
    RequestTimeoutError,
    NetworkUnreachableError,
    UpstreamError,
    AuthError,
    RateLimitedError,
    ClientInvalidError,
    ServerFailureError,
    MalformedResponseError,
    OrderFailedError,
    RetryExhaustedError,
    OrchestrationError,
    PollTimeoutError,
    DuplicateSubmissionError,
    UnknownHandleError,
    JobNotReadyError,
)
from .retry import RetryPolicy, build_retrying, parse_retry_after
from .throttle import RequestThrottle

__all__ = [
    "ErrorKind",
    "StockOrderWebError",
    "ParseError",
    "TransportError",
    "RequestTimeoutError",
    "NetworkUnreachableError",
    "UpstreamError",
    "AuthError",
    "RateLimitedError",
    "ClientInvalidError",
    "ServerFailureError",
    "MalformedResponseError",
    "OrderFailedError",
    "RetryExhaustedError",
    "OrchestrationError",
    "PollTimeoutError",
    "DuplicateSubmissionError",
    "UnknownHandleError",
    "JobNotReadyError",
    "RetryPolicy",
    "build_retrying",
    "parse_retry_after",
    "RequestThrottle",
]
