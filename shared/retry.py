"""
Retry mechanism for resilient operations.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Union

from shared.logging import get_logger

DelayFunction = Callable[[int], float]


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 1,
                 base_delay: Union[float, DelayFunction] = 1.0,
                 max_delay: float = 30.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "exponential"):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate the delay to wait after a failed ``attempt`` (1-based)."""
    if callable(config.base_delay):
        return max(0.0, float(config.base_delay(attempt)))

    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


async def execute_with_retry(operation: Callable[[int], Awaitable[Any]],
                             config: RetryConfig,
                             *,
                             name: str = "operation",
                             exceptions: tuple = (Exception,),
                             on_retry: Optional[Callable[[int, float, BaseException], None]] = None) -> Any:
    """
    Run ``operation(attempt)`` until it succeeds or attempts are exhausted.

    The last exception is re-raised unchanged so callers see the error the
    operation itself produced. ``on_retry(attempt, delay, error)`` is called
    before each backoff sleep.
    """
    logger = get_logger(f"retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await operation(attempt)

            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, operation=name)

            return result

        except exceptions as e:
            if attempt == config.max_attempts:
                if config.max_attempts > 1:
                    logger.error(
                        "All retry attempts exhausted",
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        operation=name,
                        error=str(e)
                    )
                raise

            delay = calculate_delay(attempt, config)

            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                operation=name,
                error=str(e)
            )

            if on_retry is not None:
                on_retry(attempt, delay, e)

            await asyncio.sleep(delay)

    raise RuntimeError(f"Retry loop for {name} exited without a result")  # pragma: no cover
