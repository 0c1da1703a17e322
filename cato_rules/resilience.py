"""
Resilience Utilities: Timeouts, Retry Logic and Exponential Backoff
Bounds every call the engine makes to an external collaborator.
"""
import asyncio
import logging
import functools
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from cato_rules.exceptions import CollaboratorTimeoutError


logger = logging.getLogger("CatoRulesResilience")

T = TypeVar("T")


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: Optional[float],
    collaborator: str,
    tenant_id: Optional[str] = None
) -> T:
    """
    Await a collaborator call with an upper bound on its duration.

    Args:
        awaitable: Coroutine or future to await
        timeout_seconds: Time budget in seconds (None or <= 0 disables the bound)
        collaborator: Name used in the error and log lines
        tenant_id: Optional tenant for error context

    Returns:
        The awaited result

    Raises:
        CollaboratorTimeoutError: If the budget is exceeded
    """
    if not timeout_seconds or timeout_seconds <= 0:
        return await awaitable

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise CollaboratorTimeoutError(
            f"{collaborator} did not respond within {timeout_seconds}s",
            component=collaborator,
            tenant_id=tenant_id,
            context={"timeout_seconds": timeout_seconds}
        )


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> Callable:
    """
    Decorator for exponential backoff retry logic on coroutine functions.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Add random jitter to delay

    Example:
        @exponential_backoff(max_retries=3, base_delay=1.0)
        async def post_alert():
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except Exception as e:
                    if attempt == max_retries:
                        logger.error(
                            f"Function {func.__name__} failed after {max_retries} retries. "
                            f"Last error: {e}"
                        )
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)
                    if jitter:
                        delay = delay * (0.5 + random.random())

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func.__name__}: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def retry_on_exception(
    exceptions: Tuple[Type[Exception], ...],
    max_attempts: int = 3,
    delay: float = 0.05,
    backoff: float = 2.0
) -> Callable:
    """
    Decorator to retry a coroutine function on specific exceptions.

    The attempt count may be overridden per call through the decorated
    object's ``max_attempts`` attribute (looked up on ``self``).

    Example:
        @retry_on_exception((ConcurrentUpdateError,), max_attempts=5)
        async def increment(self, ...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempts = max_attempts
            if args and isinstance(getattr(args[0], "max_attempts", None), int):
                attempts = max(1, args[0].max_attempts)

            current_delay = delay
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    if attempt == attempts:
                        logger.error(
                            f"{func.__name__} failed after {attempts} attempts. Error: {e}"
                        )
                        raise

                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{attempts} failed: {e}. "
                        f"Retrying in {current_delay:.2f}s..."
                    )

                    await asyncio.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator
