"""Bounded retry with exponential backoff."""

import logging
import threading
import time
from typing import Callable, Generator, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryCancelled(Exception):
    """Raised when a retry loop is cancelled between attempts."""
    pass


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before the attempt following `attempt` (1-indexed).

    base, 2*base, 4*base, ...
    """
    return base_delay * (2 ** (attempt - 1))


def iter_retry(
    fn: Callable[[], T],
    attempts: int = 5,
    base_delay: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
    cancel_event: Optional[threading.Event] = None,
    retry_on: Callable[[Exception], bool] = lambda exc: True
) -> Generator[Tuple[int, Exception], None, T]:
    """Call fn until it succeeds, yielding every failed attempt.

    The generator yields (attempt, exception) after each failed call and
    returns fn's result, so callers can report attempts as they happen:

        result = yield from iter_retry(fn)

    Args:
        fn: Zero-argument callable
        attempts: Maximum number of calls (at least 1)
        base_delay: Delay after the first failure, doubled per attempt
        sleep: Sleep function (injectable for tests)
        cancel_event: Stops retrying when set
        retry_on: Returns False for exceptions that must not be retried

    Raises:
        The last exception raised by fn once attempts are exhausted
        RetryCancelled: If cancel_event is set between attempts
    """
    attempts = max(1, int(attempts))

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            logger.debug(f"Attempt {attempt}/{attempts} failed: {e}")
            yield attempt, e
            if attempt == attempts or not retry_on(e):
                raise
            if cancel_event is not None and cancel_event.is_set():
                raise RetryCancelled(f"cancelled after attempt {attempt}") from e
            sleep(backoff_delay(attempt, base_delay))

    raise AssertionError("unreachable")


def call_with_retry(
    fn: Callable[[], T],
    attempts: int = 5,
    base_delay: float = 0.25,
    on_failure: Optional[Callable[[int, Exception], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    cancel_event: Optional[threading.Event] = None,
    retry_on: Callable[[Exception], bool] = lambda exc: True
) -> T:
    """Call fn until it succeeds or the attempt ceiling is reached.

    Args:
        fn: Zero-argument callable
        attempts: Maximum number of calls (at least 1)
        base_delay: Delay after the first failure, doubled per attempt
        on_failure: Called with (attempt, exception) after each failed call
        sleep: Sleep function (injectable for tests)
        cancel_event: Stops retrying when set
        retry_on: Returns False for exceptions that must not be retried

    Returns:
        Result of fn

    Raises:
        The last exception raised by fn once attempts are exhausted
        RetryCancelled: If cancel_event is set between attempts
    """
    attempts_iter = iter_retry(
        fn,
        attempts=attempts,
        base_delay=base_delay,
        sleep=sleep,
        cancel_event=cancel_event,
        retry_on=retry_on,
    )
    while True:
        try:
            attempt, exc = next(attempts_iter)
        except StopIteration as stop:
            return stop.value
        if on_failure:
            on_failure(attempt, exc)
