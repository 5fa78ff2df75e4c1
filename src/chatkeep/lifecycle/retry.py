"""Bounded retry with a fixed delay between attempts."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryExhaustedError(Exception):
    """Raised when every attempt of a labelled operation has failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{label} failed after {attempts} attempt(s): {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


class RetryableOperation:
    """
    Run an async callable up to ``max_attempts`` times.

    The delay between attempts is fixed; it does not grow.

    Example::

        retry = RetryableOperation(max_attempts=3, delay_ms=5_000)
        count = await retry.execute(lambda: store.archive_old_sessions(7), "archive prod")
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay_ms: int = 5_000,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        self.max_attempts = max_attempts
        self.delay_ms = delay_ms
        self._sleep = sleep
        self._logger = structlog.get_logger("chatkeep.lifecycle.retry")

    async def execute(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        """
        Await ``operation()`` until it succeeds or attempts run out.

        Args:
            operation: Zero-argument callable returning an awaitable. Called
                afresh on every attempt.
            label: Human-readable name used in logs and in the final error.

        Returns:
            The first successful result.

        Raises:
            RetryExhaustedError: After the last failed attempt. The final
                underlying exception is chained as ``__cause__``.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if attempt == self.max_attempts:
                    self._logger.error(
                        "retry_exhausted",
                        operation=label,
                        attempts=self.max_attempts,
                        error=str(exc),
                    )
                    raise RetryExhaustedError(label, self.max_attempts, exc) from exc
                self._logger.warning(
                    "retry_attempt_failed",
                    operation=label,
                    attempt=attempt,
                    retry_in_ms=self.delay_ms,
                    error=str(exc),
                )
                await self._sleep(self.delay_ms / 1000)

        raise AssertionError("unreachable")  # pragma: no cover
