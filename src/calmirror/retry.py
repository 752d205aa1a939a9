"""Bounded retry of target calls on rate limiting."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .services.base import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryPolicy:
    """Retries a call a fixed number of times after a fixed backoff.

    Only :class:`TransientProviderError` is retried. Every other error, and a
    transient error that outlives the last retry, reaches the caller.
    """

    def __init__(
        self,
        backoff_seconds: float = 1.0,
        retries: int = 1,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize retry policy.

        Args:
            backoff_seconds: Wait before each retry
            retries: Retries after the first attempt
            sleep: Coroutine used for waiting, mainly for tests
        """
        if retries < 0:
            raise ValueError("retries must not be negative")
        self.backoff_seconds = backoff_seconds
        self.retries = retries
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Rate limit hit ({exc}), waiting {self.backoff_seconds}s before "
            f"attempt {retry_state.attempt_number + 1}/{self.max_attempts}"
        )

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Await ``func(*args, **kwargs)`` under this policy."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(func, *args, **kwargs)
