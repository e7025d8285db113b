"""
Retry with exponential backoff for store calls.

Only TransientStoreError is retried. Every other error, including
SystemicStoreUnavailable, propagates on the first occurrence.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    retry_delay_ms: int = 200,
    max_delay_ms: int = 10_000,
    description: str = "store call",
) -> T:
    """Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Retries after the first attempt
        retry_delay_ms: Delay before the first retry, doubled each time
        max_delay_ms: Upper bound for a single delay
        description: Label for log messages

    Returns:
        The operation's result

    Raises:
        TransientStoreError: If the last attempt still failed transiently
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientStoreError as e:
            if attempt >= max_retries:
                raise
            delay_ms = min(retry_delay_ms * (2**attempt), max_delay_ms)
            attempt += 1
            logger.warning(
                f"Transient failure in {description}, retrying",
                extra={
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "delay_ms": delay_ms,
                    "tier": e.tier,
                    "error": e.message,
                },
            )
            await asyncio.sleep(delay_ms / 1000.0)
