"""
Bounded retry for async operations.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from loguru import logger

from refillbot.errors import RetryExhaustedError, TransientError

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    delay: float,
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
    log=None,
) -> T:
    """
    Run an async operation, retrying on retriable errors.

    Args:
        operation: Zero-argument coroutine function
        max_retries: Retries after the first attempt; total attempts is max_retries + 1
        delay: Constant pause between attempts in seconds
        retry_on: Exception types that trigger another attempt
        log: Optional bound logger

    Returns:
        The first successful result

    Raises:
        RetryExhaustedError: If every attempt failed with a retriable error
        Exception: Any non-retriable error, immediately
    """
    log = log or logger
    attempts = max(max_retries, 0) + 1
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            last_error = e
            if attempt == attempts:
                break
            log.bind(attempt=attempt, max_attempts=attempts, error=str(e)).warning(
                f"Attempt {attempt}/{attempts} failed, retrying in {delay}s: {e}"
            )
            await asyncio.sleep(delay)

    log.error(f"Operation failed after {attempts} attempts: {last_error}")
    raise RetryExhaustedError(attempts, last_error) from last_error
