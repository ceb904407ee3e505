"""Retry policy for model endpoint calls, built on tenacity.

Only transient failures are retried: timeouts, connection errors and HTTP
responses with status 408, 409, 429 or 5xx. Client errors such as 400 or
401 propagate immediately so a bad request or key fails fast.

Examples:
    Retry a chat request with exponential backoff::

        >>> @with_retry(max_attempts=3)
        ... async def post_chat(payload: dict[str, object]) -> dict[str, object]:
        ...     response = await http.post("/chat/completions", json=payload)
        ...     response.raise_for_status()
        ...     return response.json()
"""

import logging
from collections.abc import Callable
from typing import TypeVar

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 409, 429})


def is_transient(exc: BaseException) -> bool:
    """True for errors worth retrying against an HTTP model endpoint."""
    match exc:
        case httpx.HTTPStatusError(response=response):
            return response.status_code in RETRYABLE_STATUS or response.status_code >= 500
        case httpx.TimeoutException() | httpx.ConnectError() | httpx.RemoteProtocolError():
            return True
        case _:
            return False


T = TypeVar("T")


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 2,
    max_wait: float = 10,
    extra_exceptions: tuple[type[Exception], ...] = (),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying async functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts, including the first.
        min_wait: Minimum wait time between retries in seconds.
        max_wait: Maximum wait time between retries in seconds.
        extra_exceptions: Additional exception types to retry on.

    Returns:
        Decorator that wraps the function with retry logic. The last
        exception is re-raised once attempts are exhausted.
    """

    def should_retry(exc: BaseException) -> bool:
        return is_transient(exc) or isinstance(exc, extra_exceptions)

    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception(should_retry),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
