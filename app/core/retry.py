"""
Retry with exponential backoff for async calls.

Only transient failures (connection drops, timeouts, transport errors) are
retried; validation and not-found style errors fail on the first attempt.
Services go through `retry_call`, usually via
services.datastore.with_datastore_retry or the Notifier.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, OperationalError

from core.environment import RetryPolicy

logger = logging.getLogger(__name__)


RETRYABLE_EXCEPTIONS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    asyncio.TimeoutError,
    ConnectionError,
    httpx.TransportError,
)


def is_retryable(exc: BaseException) -> bool:
    """
    Classifies an exception as transient or permanent.

    Domain exceptions carry an explicit `retryable` flag; infrastructure
    exceptions are matched against RETRYABLE_EXCEPTIONS. Anything else is
    treated as permanent.
    """
    flag = getattr(exc, "retryable", None)
    if isinstance(flag, bool):
        return flag
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


async def retry_call(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: RetryPolicy = RetryPolicy(),
    before_retry: Optional[Callable[[], Awaitable[Any]]] = None,
    **kwargs: Any,
) -> Any:
    """
    Awaits `func(*args, **kwargs)` under `policy`.

    `before_retry` runs between attempts (typically `session.rollback`) so a
    retried datastore call never reuses an aborted transaction. The last
    exception is re-raised unchanged when the budget is exhausted.
    """
    name = getattr(func, "__qualname__", getattr(func, "__name__", repr(func)))

    for attempt in range(policy.max_attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable(e):
                raise

            if attempt >= policy.max_attempts - 1:
                logger.error(
                    f"All {policy.max_attempts} attempts failed for {name}. "
                    f"Final error: {str(e)}"
                )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"Retry attempt {attempt + 1}/{policy.max_attempts} for {name}. "
                f"Error: {str(e)}. Waiting {delay:.2f}s..."
            )
            if before_retry is not None:
                await before_retry()
            await asyncio.sleep(delay)

    raise RuntimeError(f"Retry policy for {name} allows no attempts")
