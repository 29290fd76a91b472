"""Retry with exponential backoff.

Only failures that declare themselves retryable are attempted again. An HTTP
4xx answer, a malformed response or a bad argument fails the operation at once.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from opentelemetry import metrics
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from haos3.clients.abstract import S3ClientException

logger = logging.getLogger(__name__)

T = TypeVar("T")

meter = metrics.get_meter(__name__)
retry_counter = meter.create_counter(
    "haos3.retries",
    unit="1",
    description="Attempts started again after a transient failure.",
)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, S3ClientException) and error.retryable


class RetryCoordinator:
    """Run an operation again after transient failures.

    The first attempt runs immediately. Each retry waits first, starting at
    `initial_delay` seconds and doubling after every retry: 0.5, 1, 2, 4...
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the coordinator.

        Args:
            max_retries: Retries allowed after the first failed attempt.
            initial_delay: Seconds to wait before the first retry.
            sleep: Coroutine function used to wait between attempts.

        """
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._sleep = sleep

    def _retrying(self, description: str) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "%s failed, retrying in %.2fs (%d retries left): %s",
                description,
                delay,
                self._max_retries - retry_state.attempt_number,
                error,
            )
            retry_counter.add(1, {"operation": description, "error": type(error).__name__})

        return AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._initial_delay),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """Run `operation` until it succeeds, fails permanently or runs out of retries.

        Args:
            operation: Zero-argument coroutine function. It is called again for every
                attempt, so each attempt builds its request from scratch.
            description: Name of the operation, used in log messages.

        Returns:
            The value of the first successful attempt.

        Raises:
            S3ClientException: The permanent failure, or the last transient one.

        """
        return await self._retrying(description)(operation)
