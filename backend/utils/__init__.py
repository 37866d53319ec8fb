from .logger import setup_logging, get_logger
from .retry import RetryConfig, with_retry, RetryableClient
from .utcnow import utcnow, to_naive_utc

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",

    # Retry
    "RetryConfig",
    "with_retry",
    "RetryableClient",

    # Time
    "utcnow",
    "to_naive_utc",
]
