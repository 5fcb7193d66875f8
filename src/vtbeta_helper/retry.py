"""
Retry policy engine.

retry_with_backoff() runs a zero-argument coroutine function and retries it
on failure. Without a decision function every failure is retried with
exponential backoff (initial_delay * 2 ** attempt) until max_retries is used
up. A decision function can veto a retry or supply its own delay, which is
how server-provided wait hints are honored.

Each call owns its attempt counter; nothing is shared between concurrent
invocations.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from vtbeta_helper.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryDecision:
    """
    Outcome of a retry decision.

    Attributes:
        retry: Whether another attempt should be made.
        delay: Seconds to wait before it. None selects the default
            exponential delay; 0 retries immediately.
    """

    retry: bool
    delay: float | None = None


DecideFunc = Callable[[BaseException, int], RetryDecision]


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry policy for one call to retry_with_backoff().

    Attributes:
        max_retries: Attempts allowed beyond the first one.
        initial_delay: Base delay in seconds for exponential backoff.
        decide: Optional function receiving (error, attempt_index) and
            returning a RetryDecision. Attempt indexes start at 0.
    """

    max_retries: int
    initial_delay: float
    decide: DecideFunc | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")

    def backoff_delay(self, attempt: int) -> float:
        """Default delay after the given (0-based) failed attempt."""
        return self.initial_delay * (2**attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
) -> T:
    """
    Run an async operation, retrying failures according to a policy.

    Args:
        operation: Zero-argument coroutine function to call.
        config: Retry policy.

    Returns:
        The operation's result from the first successful attempt.

    Raises:
        Exception: The last error, once retries are exhausted or the decision
            function vetoes a retry.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= config.max_retries:
                logger.debug(
                    "Retries exhausted",
                    extra={"attempts": attempt + 1, "error": str(e)},
                )
                raise

            if config.decide is None:
                delay = config.backoff_delay(attempt)
            else:
                decision = config.decide(e, attempt)
                if not decision.retry:
                    raise
                delay = (
                    decision.delay
                    if decision.delay is not None
                    else config.backoff_delay(attempt)
                )

            logger.warning(
                f"Attempt {attempt + 1}/{config.max_retries + 1} failed, "
                f"retrying in {delay:.2f}s: {e}",
                extra={"attempt": attempt + 1, "delay": delay},
            )
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
