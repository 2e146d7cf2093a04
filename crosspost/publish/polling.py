"""
Shared wait / retry primitives built on tenacity.

Three loops in the pipeline wait on a remote state machine:

  X media processing        poll STATUS, server-suggested delay (min 5s), 5 min budget
  Instagram container ready  poll status_code, 2s doubling capped at 10s, 2 min budget
  Instagram carousel create  retry TransientError, 2s doubling, 5 attempts

All of them go through ``poll_until`` or ``retry_transient`` so timeout and
backoff behave the same everywhere.  ``sleep`` and ``clock`` are injectable.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)

from crosspost.publish.errors import PublishTimeoutError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


@dataclass(frozen=True)
class Backoff:
    """
    Delay schedule: ``initial * factor ** (attempt - 1)``, clamped to
    ``[minimum, maximum]``.
    """

    initial: float
    factor: float = 2.0
    maximum: Optional[float] = None
    minimum: float = 0.0

    def delay(self, attempt: int) -> float:
        """Delay to wait after the *attempt*-th try (1-based)."""
        value = self.initial * self.factor ** max(attempt - 1, 0)
        if self.maximum is not None:
            value = min(value, self.maximum)
        return max(value, self.minimum)

    def as_wait(self) -> Callable[[RetryCallState], float]:
        return lambda state: self.delay(state.attempt_number)


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    *,
    backoff: Backoff,
    timeout: float,
    delay_hint: Optional[Callable[[T], float]] = None,
    initial_delay: float = 0.0,
    sleep: Optional[Sleep] = None,
    clock: Clock = time.monotonic,
    what: str = "remote operation",
) -> T:
    """
    Call *fetch* until *is_done* accepts its result and return that result.

    Exceptions raised by *fetch* are not retried.  When *delay_hint* returns
    a positive value for the last result it replaces the backoff delay (still
    floored at ``backoff.minimum``).  Raises PublishTimeoutError once
    *timeout* seconds have elapsed on *clock* without a done result.
    """
    sleep = sleep or asyncio.sleep
    started = clock()

    def _wait(state: RetryCallState) -> float:
        delay = backoff.delay(state.attempt_number)
        if delay_hint is not None and state.outcome is not None and not state.outcome.failed:
            hinted = delay_hint(state.outcome.result())
            if hinted and hinted > 0:
                delay = max(float(hinted), backoff.minimum)
        return delay

    def _stop(state: RetryCallState) -> bool:
        return clock() - started >= timeout

    def _log_attempt(state: RetryCallState) -> None:
        logger.debug("Polling %s: attempt %d not done yet", what, state.attempt_number)

    if initial_delay > 0:
        await sleep(initial_delay)

    retrying = AsyncRetrying(
        retry=retry_if_result(lambda result: not is_done(result)),
        wait=_wait,
        stop=_stop,
        sleep=sleep,
        after=_log_attempt,
        reraise=True,
    )
    try:
        return await retrying(fetch)
    except RetryError as exc:
        raise PublishTimeoutError(
            f"Timed out after {timeout:.0f}s waiting for {what}"
        ) from exc


async def retry_transient(
    call: Callable[[], Awaitable[T]],
    *,
    backoff: Backoff,
    attempts: int,
    sleep: Optional[Sleep] = None,
) -> T:
    """
    Run *call*, retrying only on TransientError, at most *attempts* times.

    The last TransientError propagates unchanged once attempts run out; any
    other exception propagates immediately.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(TransientError),
        wait=backoff.as_wait(),
        stop=stop_after_attempt(attempts),
        sleep=sleep or asyncio.sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    return await retrying(call)
