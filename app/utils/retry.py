"""
Retry utility functions with exponential backoff.
Categorizes errors as transient (retryable) or permanent (non-retryable).
"""

import functools
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings

logger = structlog.get_logger()

T = TypeVar("T")


def is_transient_error(exception: BaseException) -> bool:
    """
    Determine if an exception represents a transient error that should be retried.

    Args:
        exception: The exception to check

    Returns:
        True if error is transient (retryable), False otherwise
    """
    # Network/connection errors are transient
    if isinstance(exception, httpx.ConnectError | httpx.TimeoutException | httpx.NetworkError):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
        # HTTP 5xx errors and rate limiting (429) are transient
        return 500 <= status_code < 600 or status_code == 429

    if isinstance(exception, TimeoutError):
        return True

    # Everything else (4xx, validation, unknown errors) is not retried
    return False


def is_unsent_request_error(exception: BaseException) -> bool:
    """
    Narrower policy for non-idempotent requests (product creation).

    Only failures where the server cannot have applied the request are retried:
    the connection was never established, or the request was rate limited. A
    timeout or 5xx after the request was sent may already have been committed.
    """
    if isinstance(exception, httpx.ConnectError | httpx.ConnectTimeout):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code == 429
    return False


def async_retry_with_backoff(
    max_attempts: int | None = None,
    initial_delay: float | None = None,
    multiplier: float | None = None,
    max_delay: float | None = None,
    retry_on: Callable[[BaseException], bool] = is_transient_error,
):
    """
    Decorator for retrying coroutines with exponential backoff.
    Only retries errors accepted by retry_on; anything else propagates on the first attempt.

    Defaults are read from settings when the wrapped coroutine is called, so
    configuration changes (and test overrides) apply without re-importing.

    Args:
        max_attempts: Maximum number of attempts, including the first call
        initial_delay: Initial delay in seconds
        multiplier: Multiplier for exponential backoff
        max_delay: Maximum delay in seconds
        retry_on: Predicate deciding which exceptions are retried

    Returns:
        Decorated coroutine function with retry logic
    """

    def retry_decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(max_attempts or settings.shopify_max_retry_attempts),
                wait=wait_exponential(
                    multiplier=multiplier or settings.retry_backoff_multiplier,
                    min=initial_delay if initial_delay is not None else settings.retry_initial_delay_seconds,
                    max=max_delay or settings.retry_max_delay_seconds,
                ),
                retry=retry_if_exception(retry_on),
                reraise=True,
                before_sleep=_log_retry_attempt,
            )
            async for attempt in retrying:
                with attempt:
                    return await func(*args, **kwargs)
            raise RuntimeError("retry loop exited without a result")  # pragma: no cover

        return wrapper

    return retry_decorator


def _log_retry_attempt(retry_state: RetryCallState):
    """Log retry attempt before sleeping."""
    if retry_state.outcome is not None:
        exception = retry_state.outcome.exception()
        logger.warning(
            "Retrying after transient error",
            attempt=retry_state.attempt_number,
            exception=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )
