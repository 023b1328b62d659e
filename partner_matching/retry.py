"""
Retry Logic with Exponential Backoff.

Декоратор для повторных попыток при транзиентных ошибках БД
(разрыв соединения, "database is locked" у SQLite, таймауты пула).
Конфликты версий сюда не относятся: их обрабатывает координатор.
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, Optional, Tuple, TypeVar

from sqlalchemy.exc import OperationalError, InterfaceError

from partner_matching.config import matching_config

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple = (Exception,),
    on_retry: Optional[Callable] = None
):
    """
    Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay between retries (seconds)
        backoff_factor: Multiplier for delay after each retry
        exceptions: Tuple of exception types to catch
        on_retry: Optional callback function(attempt, exception, delay) called before retry

    Example:
        @retry_with_backoff(max_attempts=3, initial_delay=0.05)
        async def load_snapshot():
            ...

    Delays:
        Attempt 1: 0s (immediate)
        Attempt 2: initial_delay
        Attempt 3: initial_delay * backoff_factor
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"❌ {func.__name__} failed after {max_attempts} attempts: {e}"
                        )
                        raise

                    logger.warning(
                        f"⚠️ {func.__name__} attempt {attempt}/{max_attempts} failed: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        on_retry(attempt, e, delay)

                    await asyncio.sleep(delay)
                    delay *= backoff_factor

        return wrapper
    return decorator


class RetryConfig:
    """Configuration for retry behavior."""

    DEFAULT_MAX_ATTEMPTS = 3
    DEFAULT_INITIAL_DELAY = 0.05
    DEFAULT_BACKOFF_FACTOR = 2.0

    DATABASE_EXCEPTIONS = (
        OperationalError,
        InterfaceError,
        asyncio.TimeoutError,
        ConnectionError,
    )

    @classmethod
    def get_database_retry_decorator(cls):
        """Get pre-configured retry decorator for repository calls."""
        return retry_with_backoff(
            max_attempts=int(matching_config.get_retry_setting('attempts', cls.DEFAULT_MAX_ATTEMPTS)),
            initial_delay=float(matching_config.get_retry_setting('initial_delay', cls.DEFAULT_INITIAL_DELAY)),
            backoff_factor=float(matching_config.get_retry_setting('backoff_factor', cls.DEFAULT_BACKOFF_FACTOR)),
            exceptions=cls.DATABASE_EXCEPTIONS
        )


# Pre-configured decorators
db_retry = RetryConfig.get_database_retry_decorator()


async def retry_async(
    func: Callable,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple = (Exception,)
) -> T:
    """
    Retry an async function with exponential backoff.

    Usage:
        result = await retry_async(
            lambda: repository.get_profile(user_id),
            max_attempts=3,
            exceptions=(OperationalError,)
        )
    """
    return await retry_with_backoff(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        backoff_factor=backoff_factor,
        exceptions=exceptions
    )(func)()
