"""
PURPOSE: Retry decorator with exponential backoff for broker calls.
"""

import asyncio
import functools
from typing import Any, Awaitable, Callable, Tuple

from shared_event_bus.utils.logger import get_logger

logger = get_logger("utils.decorators")


def retry(
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: Tuple[type, ...] = (Exception,)
) -> Callable:
    """
    PURPOSE: Retry decorator with exponential backoff for async functions.
    Retries on the given exceptions up to max_retries times, then re-raises
    the last one.

    Args:
        max_retries: Maximum number of retry attempts after the first call (default 3).
        delay: Initial delay between retries in seconds (default 1.0).
        backoff: Exponential backoff multiplier (default 2.0).
        exceptions: Exception types that trigger a retry (default (Exception,)).

    Returns:
        Callable: Decorated coroutine function with retry logic.
    """
    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            current_delay = delay
            attempt = 0

            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        logger.error(
                            "max_retries_exceeded",
                            function=func.__name__,
                            attempts=attempt + 1,
                            error=str(e)
                        )
                        raise
                    attempt += 1
                    logger.info(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=current_delay,
                        error=str(e)
                    )
                    if current_delay > 0:
                        await asyncio.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator
