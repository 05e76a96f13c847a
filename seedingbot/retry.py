"""Retry with exponential backoff."""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Callable, TypeVar

T = TypeVar("T")


class RetryError(Exception):
    """Raised when every attempt failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(f"failed after {attempts} retries: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def retry(fn: Callable[[], T], max_retries: int, initial_delay: float | timedelta) -> T:
    """Call ``fn`` up to ``max_retries`` times, doubling the delay between attempts.

    Returns the first successful result; raises RetryError chained to the last failure.
    """
    delay = initial_delay.total_seconds() if isinstance(initial_delay, timedelta) else initial_delay
    last_error: Exception | None = None
    for attempt in range(max_retries):
        try:
            return fn()
        except Exception as exc:
            last_error = exc
        if attempt < max_retries - 1:
            time.sleep(delay * (1 << attempt))
    raise RetryError(max_retries, last_error) from last_error