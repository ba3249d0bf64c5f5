# common/retry_utils.py
# -*- coding: utf-8 -*-
"""
Bounded retry of an action with a fixed delay.

The retry loop stops on the first success, when the time budget would be
exceeded by another wait, or when the caller sets the cancellation event.
The budget is measured from the first attempt of the action.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

module_logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    """Base class for a retried action that did not succeed."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: Optional[BaseException] = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class RetryTimeoutError(RetryError):
    """The time budget ran out before the action succeeded."""


class RetryCancelledError(RetryError):
    """The cancellation event was set before the action succeeded."""


@dataclass
class RetryPolicy:
    """
    Fixed-delay retry policy.

    Attributes:
        delay: Seconds to wait between two attempts.
        budget: Total seconds the action may take, counted from its first attempt.
        cancel_event: Event that stops the retry loop when set.
    """

    delay: float
    budget: float
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self):
        if self.delay < 0:
            raise ValueError("delay must not be negative")
        if self.budget < 0:
            raise ValueError("budget must not be negative")

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


def retry(
    action: Callable[[], T],
    policy: RetryPolicy,
    description: str = "action",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    current_logger: Optional[logging.Logger] = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Runs `action` until it returns without raising.

    An attempt that raises one of `retry_on` is followed by a wait of
    `policy.delay` seconds and a new attempt, unless the wait would take
    the elapsed time past `policy.budget` or the cancellation event is set.
    Cancellation is checked before every attempt and interrupts the wait.

    Args:
        action: Zero-argument callable. Raising means the attempt failed.
        policy: Delay, budget and cancellation event.
        description: Human readable name of the action, used in log messages.
        retry_on: Exception types that count as a failed attempt. Anything
            else propagates immediately.
        current_logger: Logger to use instead of the module logger.
        clock: Monotonic clock returning seconds.

    Returns:
        The value returned by the successful attempt.

    Raises:
        RetryTimeoutError: The budget ran out. `last_error` holds the error
            of the final attempt, if any attempt ran.
        RetryCancelledError: The cancellation event was set.
    """
    logger_to_use = current_logger if current_logger else module_logger
    started_at = clock()
    attempts = 0
    last_error: Optional[BaseException] = None

    while True:
        if policy.cancelled:
            raise RetryCancelledError(
                f"Cancelled {description} after {attempts} attempt(s)",
                attempts=attempts,
                last_error=last_error,
            ) from last_error

        if attempts > 0 and clock() - started_at > policy.budget:
            raise RetryTimeoutError(
                f"Timed out waiting for {description} after {attempts} attempt(s)",
                attempts=attempts,
                last_error=last_error,
            ) from last_error

        attempts += 1
        try:
            return action()
        except retry_on as e:
            last_error = e

        # Cancellation during the attempt wins over an exhausted budget.
        if policy.cancelled:
            raise RetryCancelledError(
                f"Cancelled {description} after {attempts} attempt(s)",
                attempts=attempts,
                last_error=last_error,
            ) from last_error

        elapsed = clock() - started_at
        if elapsed + policy.delay > policy.budget:
            raise RetryTimeoutError(
                f"Timed out waiting for {description} after {attempts} "
                f"attempt(s) ({elapsed:.1f}s elapsed, budget {policy.budget:.1f}s): "
                f"{last_error}",
                attempts=attempts,
                last_error=last_error,
            ) from last_error

        logger_to_use.debug(
            f"Attempt {attempts} of {description} failed: {last_error}. "
            f"Retrying in {policy.delay:g}s."
        )
        if policy.cancel_event.wait(policy.delay):
            raise RetryCancelledError(
                f"Cancelled {description} after {attempts} attempt(s)",
                attempts=attempts,
                last_error=last_error,
            ) from last_error
