from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import httpx
from simple_logger.logger import get_logger

from migration_api.libs.exceptions import HttpError
from migration_api.utils.constants import (
    RETRY_INTERVAL,
    RETRY_MAX_ATTEMPTS,
    RETRY_ON_RESULT_INTERVAL,
    TRANSIENT_STATUS_CODES,
)

T = TypeVar("T")


def is_transient_error(error: BaseException) -> bool:
    """Default failure classification: transient HTTP statuses and network level failures."""
    if isinstance(error, HttpError):
        return error.status_code in TRANSIENT_STATUS_CODES
    return isinstance(error, httpx.TransportError)


@dataclass
class RetryResult(Generic[T]):
    result: T | None
    attempts: int
    succeeded: bool


class RetryPolicy:
    """
    Retry an async operation under a failure predicate.

    Knows nothing about rate limits: the inter-attempt delay is a short linear step
    (attempt * retry_interval). Waiting for quota is the transport's job.

    Example:
        >>> policy = RetryPolicy(logger=logger)
        >>> content = await policy.retry(lambda: client.get(url))
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        retry_interval: float = RETRY_INTERVAL,
        result_retry_interval: float = RETRY_ON_RESULT_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.logger = logger or get_logger(name="retry-policy")
        # Always run the operation at least once
        self.max_attempts = max(1, max_attempts)
        self.retry_interval = max(0.0, retry_interval)
        self.result_retry_interval = max(0.0, result_retry_interval)
        self._sleep = sleep

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_transient: Callable[[BaseException], bool] | None = None,
    ) -> T:
        """
        Run `operation`, re-invoking it while it fails with a transient error.

        Args:
            operation: Zero-argument coroutine function; must be safe to repeat
            is_transient: Failure predicate (default: is_transient_error)

        Returns:
            The operation's result

        Raises:
            The operation's exception, unwrapped, when it is not transient or attempts are exhausted
        """
        predicate = is_transient or is_transient_error

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()

            except asyncio.CancelledError:
                raise

            except Exception as error:
                # Unauthorized never gets better by retrying
                if isinstance(error, HttpError) and error.status_code == 401:
                    self.logger.error(f"Unauthorized (HTTP 401). Please check your token and try again: {error}")
                    raise

                if not predicate(error) or attempt >= self.max_attempts:
                    raise

                status = f"HTTP {error.status_code}" if isinstance(error, HttpError) else type(error).__name__
                self.logger.debug(
                    f"Call failed with {status} (attempt {attempt}/{self.max_attempts}): {error}. Retrying..."
                )

                if self.retry_interval:
                    await self._sleep(attempt * self.retry_interval)

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")

    async def retry_on_result(
        self,
        operation: Callable[[], Awaitable[T]],
        result_predicate: Callable[[T], bool],
        retry_log_message: str | None = None,
    ) -> RetryResult[T]:
        """
        Re-invoke `operation` while `result_predicate(result)` is true.

        Exceptions are not caught. When attempts run out the last result is returned with
        succeeded=False instead of raising, so pollers can decide what a timeout means.
        """
        result: T | None = None

        for attempt in range(1, self.max_attempts + 1):
            result = await operation()
            if not result_predicate(result):
                return RetryResult(result=result, attempts=attempt, succeeded=True)

            if attempt < self.max_attempts:
                self.logger.debug(retry_log_message or "Retrying...")
                if self.result_retry_interval:
                    await self._sleep(attempt * self.result_retry_interval)

        return RetryResult(result=result, attempts=self.max_attempts, succeeded=False)
