"""Error types and retry policy.

Transient analyzer failures (timeouts, rate limits, server errors, empty
replies) are retried with growing delays; permanent failures and exhausted
retries surface to the scheduler, which counts them against the tick.
"""

import asyncio
import random
from typing import Any, Callable, Optional, Tuple, Type

from loguru import logger


class WorktrailError(Exception):
    """Base class for worktrail errors."""


class ConfigError(WorktrailError):
    """Configuration is unusable; fatal at startup."""


class AnalysisError(WorktrailError):
    """The analyzer rejected the request; retrying will not help."""


class TransientAnalysisError(AnalysisError):
    """The analyzer failed in a way that may succeed on retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class RetryPolicy:
    """Retry policy with exponential backoff."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 2.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 retry_on: Tuple[Type[BaseException], ...] = (TransientAnalysisError,)):
        """
        Initialize retry policy.

        Args:
            max_attempts: Total attempts including the first one
            base_delay: Delay before the second attempt, in seconds
            max_delay: Maximum delay in seconds
            exponential_base: Growth factor between delays
            jitter: Whether to add jitter
            retry_on: Exception types worth retrying
        """
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retry_on = retry_on

    def calculate_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """
        Calculate delay after a failed attempt.

        Args:
            attempt: Failed attempt number (1-based)
            error: The failure, consulted for a server-provided retry hint

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay = delay * (0.5 + random.random())

        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, min(float(retry_after), self.max_delay))

        return delay

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute an async function with the retry policy.

        Raises:
            The last exception once attempts are exhausted, or immediately
            for exception types outside ``retry_on``.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(f"All {self.max_attempts} attempts failed: {e}")
                    raise
                delay = self.calculate_delay(attempt, e)
                logger.warning(f"Attempt {attempt}/{self.max_attempts} failed, retrying in {delay:.2f}s: {e}")
                await asyncio.sleep(delay)
