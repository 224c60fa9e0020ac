"""
Uniform retry / backoff / timeout wrapper for calls into external collaborators.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import aiohttp

from .errors import OperationTimeout, RetriesExhausted, TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another attempt. Anything else propagates immediately.
TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    TransientIOError,
    OperationTimeout,
    aiohttp.ClientError,
    OSError,
)


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for a single call site."""
    max_attempts: int = 3
    backoff_ms: int = 500
    timeout_ms: int = 10000


async def with_retry(operation: Callable[[], Awaitable[T]], config: RetryConfig,
                     label: str = "operation",
                     sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
    """
    Run ``operation`` under a hard timeout, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Attempts, backoff between attempts and per-attempt timeout
        label: Name used in log lines
        sleep: Awaitable delay, injectable for tests

    Returns:
        The first successful result

    Raises:
        RetriesExhausted: every attempt failed transiently
        Any non-transient error raised by ``operation``
    """
    attempts = max(1, config.max_attempts)
    last_error: BaseException = OperationTimeout(f"{label} never ran")

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=config.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            last_error = OperationTimeout(f"{label} exceeded {config.timeout_ms} ms")
        except TRANSIENT_ERRORS as e:
            last_error = e

        logger.warning(f"⚠️  {label} attempt {attempt}/{attempts} failed: {last_error}")
        if attempt < attempts:
            await sleep(config.backoff_ms / 1000.0)

    logger.error(f"❌ {label} gave up after {attempts} attempts")
    raise RetriesExhausted(last_error, attempts)
