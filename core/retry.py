"""
Retry policy for upstream HTTP calls.

RetryPolicy is immutable configuration, one per ResilientClient. It is
turned into a tenacity Retrying object per call:

    - Retried: timeouts, network failures, 429 and 5xx
    - Not retried: 401/403, other 4xx, malformed bodies
    - Delay for attempt n: min(max_delay, base_delay * multiplier ** (n - 1))
    - A 429 carrying Retry-After overrides the delay for that one retry

Usage:
    policy = RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=10.0)
    for attempt in build_retrying(policy, sleep=time.sleep, logger=logger):
        with attempt:
            response = do_request()
"""

from __future__ import annotations

import email.utils
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from .exceptions import RateLimitedError, StockOrderWebError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Immutable retry configuration.

    Delays are in seconds.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    respect_retry_after: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_for_attempt(self, attempt: int) -> float:
        """Computed backoff after the given (1-based) failed attempt."""
        try:
            delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        except OverflowError:
            return self.max_delay
        return min(self.max_delay, delay)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header value (seconds or HTTP date) into seconds."""
    if not value:
        return None

    value = value.strip()
    try:
        delay = float(int(value))
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        delay = (dt - datetime.now(timezone.utc)).total_seconds()

    return max(0.0, delay)


def is_retryable(exc: BaseException) -> bool:
    """Only our own errors flagged retryable are retried."""
    return isinstance(exc, StockOrderWebError) and exc.retryable


class _RetryAfterOrBackoff(wait_base):
    """Wait strategy that honours Retry-After before falling back to backoff."""

    def __init__(self, fallback_wait: wait_base, respect_retry_after: bool) -> None:
        self._fallback_wait = fallback_wait
        self._respect_retry_after = respect_retry_after

    def __call__(self, retry_state: RetryCallState) -> float:
        if self._respect_retry_after:
            delay = self._retry_after_delay(retry_state)
            if delay is not None:
                return delay
        return float(self._fallback_wait(retry_state))

    @staticmethod
    def _retry_after_delay(retry_state: RetryCallState) -> Optional[float]:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return None
        exc = outcome.exception()
        if isinstance(exc, RateLimitedError):
            return exc.retry_after
        return None


def build_retrying(
    policy: RetryPolicy,
    sleep: Callable[[float], None],
    logger: Optional[logging.Logger] = None,
) -> Retrying:
    """
    Create a tenacity Retrying object for one logical call.

    reraise is off: when attempts run out tenacity raises RetryError, which
    the client converts to RetryExhaustedError. Non-retryable errors are
    re-raised unchanged after the first attempt.
    """
    log = logger or logging.getLogger(__name__)

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        log.warning(
            f"Attempt {retry_state.attempt_number}/{policy.max_attempts} failed "
            f"({exc}); retrying in {delay:.2f}s"
        )

    return Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_RetryAfterOrBackoff(
            fallback_wait=wait_exponential(
                multiplier=policy.base_delay,
                exp_base=policy.backoff_multiplier,
                max=policy.max_delay,
            ),
            respect_retry_after=policy.respect_retry_after,
        ),
        retry=retry_if_exception(is_retryable),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=False,
    )
