"""Retry/backoff engine for remote reasoning calls.

with_retry() calls an operation with its attempt index (so the operation can
pick a model from ModelFallbackRegistry) and retries when an attempt:
- raises TransientNetworkFailure (EmptyResponseError included), or
- returns a payload the caller's is_empty() predicate rejects.

Other exceptions propagate immediately. The wait before attempt n + 1 is
base_delay_ms * (n + 1): it grows linearly with the attempt index.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import structlog

from deepdive.core.exceptions import EmptyResponseError, TransientNetworkFailure

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """Result of with_retry().

    Attributes:
        value: Successful payload, or the fallback value when used_fallback
        attempts: Number of times the operation was invoked
        error: Last qualifying failure (None on first-try success)
        used_fallback: True when retries were exhausted and fallback supplied value
    """

    value: Optional[T]
    attempts: int
    error: Optional[Exception] = None
    used_fallback: bool = False

    @property
    def succeeded(self) -> bool:
        """True when some attempt produced a usable payload."""
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the last error if there is none."""
        if self.value is None:
            raise self.error or EmptyResponseError("Operation produced no value")
        return self.value


def delay_for(attempt_index: int, base_delay_ms: int) -> float:
    """Seconds to wait after a failed attempt_index (0-based)."""
    return base_delay_ms * (attempt_index + 1) / 1000.0


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    max_attempts: int,
    base_delay_ms: int,
    *,
    is_empty: Optional[Callable[[T], bool]] = None,
    fallback: Optional[Callable[[], T]] = None,
    on_attempt: Optional[Callable[[int], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation_name: str = "remote_call",
) -> RetryOutcome[T]:
    """Run operation(attempt_index) up to max_attempts times.

    Args:
        operation: Coroutine function receiving the 0-based attempt index
        max_attempts: Upper bound on invocations (>= 1)
        base_delay_ms: Backoff unit in milliseconds
        is_empty: Predicate marking a successful payload as unusable
        fallback: Supplies a value once all attempts are exhausted
        on_attempt: Called with the attempt index before each invocation
        sleep: Awaitable delay (injected in tests)
        operation_name: Label for logs

    Returns:
        RetryOutcome; never raises for qualifying failures
    """
    max_attempts = max(1, max_attempts)
    last_error: Optional[Exception] = None

    for attempt_index in range(max_attempts):
        if on_attempt is not None:
            on_attempt(attempt_index)

        try:
            value = await operation(attempt_index)
        except TransientNetworkFailure as e:
            last_error = e
            log.warning(
                "retry_attempt_failed",
                operation=operation_name,
                attempt=attempt_index + 1,
                max_attempts=max_attempts,
                error_type=type(e).__name__,
                error=e.message,
            )
        else:
            if is_empty is not None and is_empty(value):
                last_error = EmptyResponseError(
                    f"{operation_name} returned an empty payload"
                )
                log.warning(
                    "retry_attempt_empty",
                    operation=operation_name,
                    attempt=attempt_index + 1,
                    max_attempts=max_attempts,
                )
            else:
                if attempt_index > 0:
                    log.info(
                        "retry_recovered",
                        operation=operation_name,
                        attempts=attempt_index + 1,
                    )
                return RetryOutcome(value=value, attempts=attempt_index + 1)

        if attempt_index < max_attempts - 1:
            delay = delay_for(attempt_index, base_delay_ms)
            log.info(
                "retry_backoff",
                operation=operation_name,
                delay_seconds=delay,
                next_attempt=attempt_index + 2,
            )
            await sleep(delay)

    log.warning(
        "retry_exhausted",
        operation=operation_name,
        attempts=max_attempts,
        fallback=fallback is not None,
    )

    if fallback is not None:
        return RetryOutcome(
            value=fallback(),
            attempts=max_attempts,
            error=last_error,
            used_fallback=True,
        )
    return RetryOutcome(value=None, attempts=max_attempts, error=last_error)
