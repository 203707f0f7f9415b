"""
Retry utilities with exponential backoff.

Usage:
    from pesaflow_core.retry import RetryConfig, retry_async

    config = RetryConfig(max_retries=2, base_delay=0.5, retry_condition=is_retryable)
    result = await retry_async(submit, order, config=config)

When every attempt fails the last exception is re-raised unchanged, so
callers keep handling their own error types.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Optional,
    ParamSpec,
    Type,
    TypeVar,
)

from .constants import RetryDefaults
from .exceptions import PesaflowGatewayError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (0 means no retries)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Maximum jitter factor (0.0-1.0) added to delays
        retryable_exceptions: Tuple of exception types that trigger retries
        non_retryable_exceptions: Tuple of exception types that should not be retried
        on_retry: Optional callback called before each retry
        retry_condition: Optional function to determine if exception should be retried
    """

    max_retries: int = RetryDefaults.DEFAULT_MAX_RETRIES
    base_delay: float = RetryDefaults.DEFAULT_BASE_DELAY
    max_delay: float = RetryDefaults.DEFAULT_MAX_DELAY
    exponential_base: float = RetryDefaults.DEFAULT_EXPONENTIAL_BASE
    jitter: float = RetryDefaults.DEFAULT_JITTER
    retryable_exceptions: tuple[Type[Exception], ...] = (Exception,)
    non_retryable_exceptions: tuple[Type[Exception], ...] = ()
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
    retry_condition: Optional[Callable[[Exception], bool]] = None

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based), capped and jittered."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def should_retry(self, exception: Exception) -> bool:
        """Determine if the exception should trigger a retry."""
        # Non-retryable takes precedence
        if isinstance(exception, self.non_retryable_exceptions):
            return False

        if self.retry_condition is not None:
            return self.retry_condition(exception)

        return isinstance(exception, self.retryable_exceptions)


async def retry_async(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    config: Optional[RetryConfig] = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute an async function with retry logic.

    Raises:
        The last exception raised by `func` once retries are exhausted, or
        immediately when the exception is not retryable.
    """
    if config is None:
        config = RetryConfig()

    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if attempt >= config.max_retries or not config.should_retry(e):
                raise

            delay = config.calculate_delay(attempt)
            logger.warning(
                f"Retry {attempt + 1}/{config.max_retries} for "
                f"{name} after {type(e).__name__}: {e}. "
                f"Waiting {delay:.2f}s"
            )

            if config.on_retry:
                config.on_retry(attempt + 1, e, delay)

            await asyncio.sleep(delay)

    raise RuntimeError("unreachable: retry loop exited without result")


def is_retryable_gateway_error(exc: Exception) -> bool:
    """Timeouts, connection errors and 5xx from the gateway."""
    return isinstance(exc, PesaflowGatewayError) and exc.retryable


def submit_retry_config(max_retries: int = RetryDefaults.SUBMIT_MAX_RETRIES) -> RetryConfig:
    """Retry policy for order submission at the HTTP boundary."""
    return RetryConfig(
        max_retries=max_retries,
        base_delay=RetryDefaults.SUBMIT_BASE_DELAY,
        max_delay=RetryDefaults.SUBMIT_MAX_DELAY,
        retry_condition=is_retryable_gateway_error,
    )
