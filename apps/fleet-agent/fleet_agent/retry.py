"""
Fixed-delay retry.

Two policies are used across the fleet:
  - unbounded (max_attempts=None): token issuance and account lookup, which
    block their own identity until they succeed
  - bounded (max_attempts=N): reward/detail calls, whose exhaustion is logged
    and tolerated by the caller

Waits go through a threading.Event so a shutdown cancels them immediately.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation  = operation
        self.attempts   = attempts
        self.last_error = last_error


class RetryCancelled(Exception):
    """Shutdown was requested while waiting for the next attempt."""


@dataclass(frozen=True)
class RetryPolicy:
    delay:        float = 60.0
    max_attempts: Optional[int] = None   # None = retry forever

    @classmethod
    def forever(cls, delay: float) -> "RetryPolicy":
        return cls(delay=delay, max_attempts=None)

    @classmethod
    def bounded(cls, attempts: int, delay: float) -> "RetryPolicy":
        return cls(delay=delay, max_attempts=max(1, attempts))

    def allows(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts


def retry_with_fixed_delay(
    func:      Callable[[], T],
    policy:    RetryPolicy,
    operation: str,
    stop:      Optional[threading.Event] = None,
    retry_on:  Tuple[Type[BaseException], ...] = (Exception,),
    prefix:    str = "",
    wait:      Optional[Callable[[float], bool]] = None,
) -> T:
    """
    Call `func` until it returns, sleeping `policy.delay` between attempts.

    `wait(seconds)` must return True when the wait was interrupted by
    shutdown; it defaults to `stop.wait`. Raises RetryExhausted when a bounded
    policy runs out and RetryCancelled when shutdown interrupts a wait.
    """
    stop = stop or threading.Event()
    wait = wait or stop.wait
    label = f"{prefix} " if prefix else ""

    attempt = 0
    while True:
        if stop.is_set():
            raise RetryCancelled(operation)
        attempt += 1
        try:
            return func()
        except retry_on as e:
            log.warning(f"{label}Error in {operation}, attempt {attempt}: {e}")
            if not policy.allows(attempt):
                log.error(f"{label}All retry attempts failed for {operation}")
                raise RetryExhausted(operation, attempt, e) from e

        log.info(f"{label}Retrying {operation} in {policy.delay:g} seconds…")
        if wait(policy.delay):
            raise RetryCancelled(operation)
