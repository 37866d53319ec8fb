import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Optional, Type

import httpx

from utils.logger import get_logger

logger = get_logger("retry")


@dataclass
class RetryConfig:
    """Backoff policy for idempotent external reads (forecasts, prices, order status)."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[Type[BaseException], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        ConnectionError,
        asyncio.TimeoutError,
    )
    retryable_status_codes: tuple[int, ...] = (429, 500, 502, 503, 504)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Exponential backoff with optional jitter"""
    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)
    if config.jitter:
        delay = delay * (0.5 + random.random())
    return delay


def is_retryable_error(error: BaseException, config: RetryConfig) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in config.retryable_status_codes
    return isinstance(error, config.retryable_exceptions)


def with_retry(config: Optional[RetryConfig] = None):
    """Decorator for async functions that are safe to repeat.

    Never wrap order placement with this: a timed-out placement may still
    have reached the venue.
    """
    policy = config or RetryConfig()

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(policy.max_attempts):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable_error(e, policy) or attempt >= policy.max_attempts - 1:
                        raise
                    delay = calculate_delay(attempt, policy)
                    logger.warning(
                        "Retrying after error",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_attempts=policy.max_attempts,
                        delay=round(delay, 3),
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


class RetryableClient:
    """httpx.AsyncClient wrapper that retries GETs on transient failures."""

    def __init__(self, client: httpx.AsyncClient, config: Optional[RetryConfig] = None):
        self.client = client
        self.config = config or RetryConfig()

    async def get(self, url: str, **kwargs) -> httpx.Response:
        for attempt in range(self.config.max_attempts):
            try:
                response = await self.client.get(url, **kwargs)
                response.raise_for_status()
                return response
            except Exception as e:
                if not is_retryable_error(e, self.config) or attempt >= self.config.max_attempts - 1:
                    raise

                delay = calculate_delay(attempt, self.config)
                # Honour Retry-After on rate limits
                if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 429:
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after:
                        try:
                            delay = max(delay, float(retry_after))
                        except ValueError:
                            pass

                logger.warning(
                    "Retrying HTTP request",
                    url=url,
                    attempt=attempt + 1,
                    delay=round(delay, 3),
                    error=str(e),
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable: retry loop exited without result")
