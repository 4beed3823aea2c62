"""
Retryable Remote Call Executor

Wraps a single outbound call (OCR, search, analysis) with bounded
exponential-backoff retry.

Retry policy:
  - Retryable:     network failures, timeouts, HTTP 5xx, HTTP 429
  - Non-retryable: every other HTTP 4xx, and anything unrecognised.
                   The original exception is re-raised untouched after
                   a single attempt.
  - Backoff:       sleep(delay), then
                     delay = min(max_delay, delay * factor * (1 + jitter * rand()))
  - Exhaustion:    after max_retries extra attempts the last error is
                   re-raised with ``attempts`` set on it.
  - Timeout:       every attempt runs under asyncio.wait_for(policy.timeout);
                   a timeout counts as retryable.

The executor keeps no state between invocations, so one policy object can
be shared by any number of concurrent callers.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from compliance.core.exceptions import RemoteServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries:    int   = 3       # extra attempts after the first
    initial_delay:  float = 1.0     # seconds
    max_delay:      float = 10.0    # seconds
    backoff_factor: float = 2.0
    jitter:         float = 0.2     # fraction added on top of each step
    timeout:        float | None = 30.0   # per attempt; None disables

    def next_delay(self, delay: float, rand: float) -> float:
        return min(self.max_delay, delay * self.backoff_factor * (1 + self.jitter * rand))


DEFAULT_OCR_POLICY = RetryPolicy()


# ---------------------------------------------------------------------------
# Retryability classification
# ---------------------------------------------------------------------------

# Provider SDK exceptions recognised by class name so that the classifier
# does not need to import every SDK (openai, botocore, ...).
_RETRYABLE_EXCEPTION_NAMES = (
    "RateLimitError",
    "ServiceUnavailableError",
    "APITimeoutError",
    "APIConnectionError",
    "InternalServerError",
    "ConnectTimeout",
    "ReadTimeout",
    "RemoteProtocolError",
)


def _status_is_retryable(status: int) -> bool:
    return status == 429 or status >= 500


def is_retryable_error(exc: BaseException) -> bool:
    """Default classifier: True for transient failures worth retrying."""
    if isinstance(exc, RemoteServiceError):
        return exc.retryable

    if isinstance(exc, httpx.HTTPStatusError):
        return _status_is_retryable(exc.response.status_code)

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if isinstance(status, int):
        return _status_is_retryable(status)

    name = type(exc).__name__
    return any(name.endswith(r) for r in _RETRYABLE_EXCEPTION_NAMES)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

async def execute_with_retry(
    operation:   Callable[[], Awaitable[T]],
    classifier:  Classifier = is_retryable_error,
    policy:      RetryPolicy = DEFAULT_OCR_POLICY,
    *,
    description: str = "remote call",
    sleep:       Callable[[float], Awaitable[None]] = asyncio.sleep,
    rand:        Callable[[], float] = random.random,
) -> T:
    """
    Run ``operation`` until it succeeds, fails non-retryably, or the retry
    budget is spent.

    ``operation`` is a zero-argument factory returning a fresh awaitable for
    each attempt. ``sleep`` and ``rand`` are injectable so tests can run the
    backoff schedule without waiting.

    Raises:
        The original exception of the final attempt. When the budget was
        exhausted it carries ``attempts`` (total number of calls made).
    """
    delay   = policy.initial_delay
    attempt = 0

    while True:
        attempt += 1
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(operation(), timeout=policy.timeout)
            return await operation()

        except Exception as exc:
            if not classifier(exc):
                logger.debug(
                    "Retry | %s non-retryable on attempt %d: %s: %s",
                    description, attempt, type(exc).__name__, exc,
                )
                raise

            if attempt > policy.max_retries:
                logger.warning(
                    "Retry | %s exhausted after %d attempts: %s: %s",
                    description, attempt, type(exc).__name__, exc,
                )
                try:
                    exc.attempts = attempt  # type: ignore[attr-defined]
                except AttributeError:
                    pass   # exception type with __slots__; nothing to attach to
                raise

            logger.warning(
                "Retry | %s attempt=%d/%d failed (%s), retrying in %.2fs",
                description, attempt, policy.max_retries + 1,
                type(exc).__name__, delay,
            )
            await sleep(delay)
            delay = policy.next_delay(delay, rand())
