"""Bounded exponential backoff for transient backend errors.

Transient errors are retried here before a single failure is reported to
the backend's circuit breaker.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from home_orchestrator.core.errors import TransientBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TransientBackendError, ConnectionError)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings.

    Attributes:
        max_attempts: Total attempts including the first (1 disables retries)
        base_delay: Initial backoff in seconds, doubled per attempt
        max_delay: Upper bound for a single backoff
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0

    def retrying(self) -> AsyncRetrying:
        """Build a tenacity retry controller for this policy."""
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


async def call_with_retry(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Call func, retrying transient errors according to policy.

    Raises:
        The last exception once attempts are exhausted, or any
        non-transient exception immediately
    """
    async for attempt in policy.retrying():
        with attempt:
            return await func(*args, **kwargs)
    raise RuntimeError("retry loop exited without result")  # pragma: no cover
