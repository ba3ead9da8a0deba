"""Bounded async retry for backend calls.

Only ``BackendError`` carries the signal used to decide on retries; raw SDK
exceptions are mapped by the providers before they reach this layer.
Cancellation is checked before every attempt and is never retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from switchyard._http import RETRYABLE_STATUS_CODES
from switchyard.cancellation import check_cancelled
from switchyard.errors import BackendError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from switchyard.cancellation import CancellationToken

T = TypeVar("T")

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with optional full jitter."""

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    max_elapsed_s: float | None = 15.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise ValueError("RetryPolicy.max_elapsed_s must be >= 0 or None")

    def delay_for(self, retry_index: int) -> float:
        """Sleep before retry number *retry_index* (1-based)."""
        base = self.initial_delay_s * (
            self.backoff_multiplier ** max(0, retry_index - 1)
        )
        base = min(self.max_delay_s, base)
        if base <= 0:
            return 0.0
        if not self.jitter:
            return base
        return random.random() * base  # noqa: S311


NO_RETRY = RetryPolicy(max_attempts=1)


def should_retry_backend_error(exc: BaseException) -> bool:
    """Return True when *exc* is a backend failure worth another attempt."""
    if not isinstance(exc, BackendError):
        return False
    if exc.retryable is not None:
        return exc.retryable
    return isinstance(exc.status_code, int) and exc.status_code in RETRYABLE_STATUS_CODES


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_backend_error,
    cancel: CancellationToken | None = None,
) -> T:
    """Run *factory* until it succeeds, the policy is exhausted, or *cancel* fires."""
    start = time.monotonic()

    attempt = 1
    while True:
        check_cancelled(cancel)
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            delay = policy.delay_for(attempt)
            retry_after = getattr(exc, "retry_after_s", None)
            if isinstance(retry_after, (int, float)) and retry_after >= 0:
                delay = max(delay, float(retry_after))

            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            log.debug(
                "Retrying after %s (attempt %d/%d, sleeping %.2fs)",
                type(exc).__name__,
                attempt,
                policy.max_attempts,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
