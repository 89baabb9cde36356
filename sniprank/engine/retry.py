"""Retry policy with exponential backoff and jitter."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from loguru import logger


class RetryPolicy:
    """Retry policy with exponential backoff."""

    def __init__(self,
                 max_retries: int = 3,
                 base_delay: float = 0.2,
                 max_delay: float = 5.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                 should_retry: Optional[Callable[[BaseException], bool]] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialize retry policy.

        Args:
            max_retries: Maximum retry attempts
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            exponential_base: Base for exponential backoff
            jitter: Whether to add jitter
            retry_on: Exception types that may be retried
            should_retry: Extra predicate narrowing ``retry_on``
            sleep: Coroutine used to wait between attempts
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retry_on = retry_on
        self.should_retry = should_retry
        self._sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for attempt.

        Args:
            attempt: Attempt number (0-based)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay = delay * (0.5 + random.random())

        return delay

    def _is_retryable(self, error: BaseException) -> bool:
        if not isinstance(error, self.retry_on):
            return False
        if self.should_retry is not None:
            return self.should_retry(error)
        return True

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute coroutine function with retry policy.

        Raises:
            The last error once retries are exhausted, or immediately for
            errors that are not retryable.
        """
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_retries or not self._is_retryable(e):
                    if attempt:
                        logger.error(f"Giving up after {attempt + 1} attempts: {e}")
                    raise

                delay = self.calculate_delay(attempt)
                logger.debug(f"Retry {attempt + 1}/{self.max_retries} after {delay:.2f}s: {e}")
                await self._sleep(delay)
                attempt += 1
