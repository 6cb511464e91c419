"""Bounded retry with exponential backoff.

:func:`with_retry` calls a blocking operation until it succeeds or all
attempts have failed. After every failed attempt it sleeps for ``backoff(attempt)``
seconds, so the default schedule over five failed attempts is 1, 2, 4, 8 and 16.
"""
import logging
import time
from typing import Any, Callable, Optional, Tuple, Type

from ..status import status

MAX_ATTEMPTS: int = 5
BACKOFF_BASE: float = 1.0
BACKOFF_FACTOR: float = 2.0


def exponential_backoff(base: float = BACKOFF_BASE, factor: float = BACKOFF_FACTOR) -> Callable[[int], float]:
    """Return a backoff function mapping a 1-based attempt number to a delay.

    Args:
        base: Delay after the first failed attempt.
        factor: Multiplier applied after every further failure.

    Returns:
        Callable[[int], float]: ``attempt -> base * factor ** (attempt - 1)``.
    """
    if base < 0:
        raise ValueError(f'Backoff base must be non-negative, got {base}.')
    if factor < 1:
        raise ValueError(f'Backoff factor must be at least 1, got {factor}.')

    def backoff(attempt: int) -> float:
        return base * factor ** (attempt - 1)

    return backoff


def with_retry(
        operation: Callable[[], Any],
        max_attempts: int = MAX_ATTEMPTS,
        backoff: Callable[[int], float] = exponential_backoff(),
        sleep: Callable[[float], Any] = time.sleep,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        give_up_on: Tuple[Type[BaseException], ...] = (),
        on_retry: Optional[Callable[[int, float, BaseException], Any]] = None,
) -> Tuple[Any, int]:
    """Call ``operation`` until it succeeds, at most ``max_attempts`` times.

    Args:
        operation: Zero-argument callable to run.
        max_attempts: Total number of attempts allowed.
        backoff: Maps the number of the failed attempt to the delay before the next step.
        sleep: Blocking sleep function. Injected by tests.
        retry_on: Exception types treated as transient.
        give_up_on: Exception types re-raised immediately without retrying.
        on_retry: Called as ``on_retry(attempt, delay, error)`` after each failed attempt.

    Returns:
        Tuple[Any, int]: The operation's result and the number of attempts it took.

    Raises:
        status.RetriesExhaustedException: If every attempt failed. Chained from the last error.
    """
    if max_attempts < 1:
        raise ValueError(f'max_attempts must be at least 1, got {max_attempts}.')

    last_exception: Optional[BaseException] = None
    attempt = 0
    while attempt < max_attempts:
        attempt += 1
        try:
            return operation(), attempt
        except give_up_on:
            raise
        except retry_on as ex:
            last_exception = ex
            delay = backoff(attempt)
            logging.warning(f'Attempt {attempt}/{max_attempts} failed: {ex}. Waiting {delay:g}s.')
            if on_retry is not None:
                on_retry(attempt, delay, ex)
            sleep(delay)

    raise status.RetriesExhaustedException(
        f'Gave up after {attempt} attempts: {last_exception}', attempts=attempt
    ) from last_exception
