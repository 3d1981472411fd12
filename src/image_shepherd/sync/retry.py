"""Retry with exponential backoff, shared by the fetcher and the publisher."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lowercased substrings that mark an error as transient
TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "deadline exceeded",
    "connection reset",
    "connectionreset",
    "eof",
    "502",
    "503",
    "504",
)


def is_transient_error(exc: BaseException) -> bool:
    """Classify an error as transient by matching its type and message."""
    text = f"{type(exc).__name__}: {exc}".lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


def _always(exc: BaseException) -> bool:
    return True


class RetryError(Exception):
    """All attempts failed, or a failure was not retryable."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with a doubling delay between them.

    With the defaults an operation runs at most 3 times, sleeping 2s and
    then 4s in between.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    factor: float = 2.0
    retryable: Callable[[BaseException], bool] = _always
    sleep: Callable[[float], None] = time.sleep

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry (max_attempts - 1 values)."""
        delay = self.base_delay
        for _ in range(self.max_attempts - 1):
            yield delay
            delay *= self.factor

    def run(self, operation: Callable[[int], T], *, label: str = "operation") -> T:
        """Call ``operation(attempt)`` until it succeeds or attempts run out.

        Raises:
            RetryError: With the attempt count and the last failure chained.
        """
        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation(attempt)
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retryable(exc):
                    logger.error(
                        "%s failed on attempt %d/%d: %s",
                        label,
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                    raise RetryError(attempt, exc) from exc

                delay = next(delays)
                logger.warning(
                    "%s attempt %d/%d failed: %s (retry in %.1fs)",
                    label,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                self.sleep(delay)
