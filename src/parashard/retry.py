"""Bounded retry with exponential backoff for transient I/O errors."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behaviour on transient failures."""

    max_attempts: int = 3
    """Total attempts, including the first one."""

    base_delay: float = 0.05
    """Base delay in seconds for exponential backoff."""

    max_delay: float = 1.0
    """Maximum delay cap in seconds."""

    backoff_factor: float = 2.0
    """Multiplier applied to the delay on each retry."""

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay after the zero-based *attempt*."""
        delay = self.base_delay * (self.backoff_factor**attempt)
        return min(delay, self.max_delay)


def retry_call(
    func: Callable[[int], _T],
    policy: RetryConfig,
    *,
    description: str,
    retry_on: tuple[type[BaseException], ...] = (OSError,),
    sleep: Callable[[float], None] = time.sleep,
) -> _T:
    """Call ``func(attempt)`` until it succeeds or *policy* is exhausted.

    The zero-based attempt number is passed to *func* so callers can pick
    a fresh unique name on every retry instead of clobbering the previous
    attempt.

    Raises:
        The last exception raised by *func* once all attempts fail.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return func(attempt)
        except retry_on as exc:
            if attempt + 1 >= attempts:
                logger.error("%s failed after %d attempt(s): %s", description, attempts, exc)
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                description,
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            sleep(delay)
    # Unreachable: the loop either returns or re-raises.
    raise AssertionError(description)
