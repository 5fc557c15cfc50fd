"""Bounded retries with exponential backoff for external calls."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import ValidationError

from research_fetch.exceptions import (
    FetchError,
    OperationCanceledError,
    OperationTimeoutError,
    UpstreamError,
)
from research_fetch.logging import get_logger

T = TypeVar("T")

log = get_logger("research_fetch.retry")


def default_is_retryable(exc: BaseException) -> bool:
    """Rate limits and transient upstream failures are retryable; nothing else is."""
    if isinstance(exc, (OperationTimeoutError, OperationCanceledError, FetchError, ValidationError)):
        return False
    if isinstance(exc, UpstreamError):
        return exc.retryable
    return False


async def with_timeout(awaitable: Awaitable[T], timeout_ms: int, *, operation: str = "operation") -> T:
    """Await with a deadline, surfacing OperationTimeoutError instead of TimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except TimeoutError as e:
        raise OperationTimeoutError(operation=operation, timeout_ms=timeout_ms) from e


async def cancellable_sleep(delay_s: float, cancel_event: asyncio.Event | None) -> bool:
    """Sleep for delay_s; return True if cancellation arrived first."""
    if cancel_event is None:
        await asyncio.sleep(delay_s)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay_s)
    except TimeoutError:
        return False
    return True


class RetryPolicy:
    """Retry a coroutine factory with exponential backoff.

    The delay before retry ``n`` (0-based) is ``base_delay_ms * 2**n``.
    Errors rejected by ``is_retryable`` fail immediately, and a set
    ``cancel_event`` stops further attempts, including during a backoff sleep.
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay_ms: int = 1000,
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.is_retryable = is_retryable

    def backoff_ms(self, attempt: int) -> int:
        return self.base_delay_ms * 2**attempt

    async def execute(
        self,
        op: Callable[[], Awaitable[T]],
        *,
        operation: str = "operation",
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCanceledError(operation)
            try:
                return await op()
            except Exception as e:
                if attempt >= self.max_retries or not self.is_retryable(e):
                    raise
                delay_ms = self.backoff_ms(attempt)
                log.warning(
                    "retry.scheduled",
                    operation=operation,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_ms=delay_ms,
                    error=str(e),
                )
                if await cancellable_sleep(delay_ms / 1000, cancel_event):
                    raise OperationCanceledError(operation) from e
                attempt += 1
